"""Google Tasks integration module."""

from gtasks_bridge.google_tasks.client import GoogleTasksClient
from gtasks_bridge.google_tasks.models import GoogleTask

__all__ = ["GoogleTask", "GoogleTasksClient"]
