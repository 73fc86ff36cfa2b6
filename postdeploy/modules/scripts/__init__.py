"""
Scripts Module - Black Box Interface

Purpose: Run operator supplied post-deployment scripts
Interface: discover_scripts(), ScriptRunner.run(), ScriptRunner.run_all()
Hidden: Interpreter selection, output streaming, timeout enforcement

A failing script aborts the remaining batch.
"""

from .runner import (
    SCRIPT_EXTENSIONS,
    ProcessResult,
    ScriptJob,
    ScriptRunner,
    discover_scripts,
)

__all__ = ["SCRIPT_EXTENSIONS", "ProcessResult", "ScriptJob", "ScriptRunner", "discover_scripts"]
