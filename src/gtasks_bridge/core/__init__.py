"""Core models and provider contract."""

from gtasks_bridge.core.models import CorrelationRecord, Side, SyncStatus, Task, TaskUpdate
from gtasks_bridge.core.provider import TaskProvider

__all__ = [
    "CorrelationRecord",
    "Side",
    "SyncStatus",
    "Task",
    "TaskProvider",
    "TaskUpdate",
]
