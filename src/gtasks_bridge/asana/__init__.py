"""Asana integration module."""

from gtasks_bridge.asana.client import AsanaClient
from gtasks_bridge.asana.models import AsanaTask, AsanaTaskUpdate

__all__ = [
    "AsanaClient",
    "AsanaTask",
    "AsanaTaskUpdate",
]
