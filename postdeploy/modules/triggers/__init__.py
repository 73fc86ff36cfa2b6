"""
Triggers Module - Black Box Interface

Purpose: Build the function trigger payload synced to the control plane
Interface: build_trigger_payload(), read_function_triggers(), read_durable_config(),
           enrich_durable_triggers()
Hidden: function.json/host.json/proxies.json layout and parsing rules

Malformed function metadata is logged and re-raised.
"""

from .triggers import (
    build_trigger_payload,
    enrich_durable_triggers,
    read_durable_config,
    read_function_triggers,
)

__all__ = [
    "build_trigger_payload",
    "enrich_durable_triggers",
    "read_durable_config",
    "read_function_triggers",
]
