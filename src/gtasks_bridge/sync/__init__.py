"""Reconciliation engine and its scheduler."""

from gtasks_bridge.sync.engine import CycleReport, ReconciliationEngine, TaskFailure
from gtasks_bridge.sync.scheduler import SyncScheduler

__all__ = [
    "CycleReport",
    "ReconciliationEngine",
    "SyncScheduler",
    "TaskFailure",
]
