"""
Retry Module - Black Box Interface

Purpose: Retry an async action a fixed number of times at a fixed interval
Interface: RetryPolicy.attempt(action) -> RetryOutcome
Hidden: tenacity wiring, sleep mechanism
"""

from .retry import (
    RESTART_RETRY_COUNT,
    RESTART_RETRY_INTERVAL_MS,
    RetryOutcome,
    RetryPolicy,
)

__all__ = ["RESTART_RETRY_COUNT", "RESTART_RETRY_INTERVAL_MS", "RetryOutcome", "RetryPolicy"]
