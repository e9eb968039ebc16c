"""Process-level infrastructure for the bridge."""

from gtasks_bridge.infrastructure.pid_manager import PIDLockError, PIDManager

__all__ = [
    "PIDLockError",
    "PIDManager",
]
