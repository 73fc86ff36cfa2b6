"""
Marker Module - Black Box Interface

Purpose: Advisory liveness files for in-progress and stalled operations
Interface: AutoSwapLock.write(), AutoSwapLock.is_active(), PendingOperationMarker.track()
Hidden: File format, freshness window, heartbeat loop

All filesystem failures are best effort: logged, never raised.
"""

from .marker import (
    AUTO_SWAP_LOCK_VALIDITY,
    DEFAULT_TRACKING_TIMEOUT,
    DEFAULT_UPDATE_INTERVAL,
    AutoSwapLock,
    PendingOperationMarker,
)

__all__ = [
    "AUTO_SWAP_LOCK_VALIDITY",
    "DEFAULT_TRACKING_TIMEOUT",
    "DEFAULT_UPDATE_INTERVAL",
    "AutoSwapLock",
    "PendingOperationMarker",
]
