"""Data models for Asana entities."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from gtasks_bridge.core.models import Task, TaskUpdate


class AsanaTask(BaseModel):
    """Asana task model with the fields the bridge syncs."""

    gid: str
    name: str = ""
    notes: str | None = None
    completed: bool = False
    modified_at: datetime
    due_on: date | None = None
    due_at: datetime | None = None

    # Subtasks are not synced
    parent: dict | None = None

    @property
    def is_subtask(self) -> bool:
        return self.parent is not None

    def due_date(self, tz: ZoneInfo) -> date | None:
        """Calendar due date, preferring the precise ``due_at`` when set."""
        if self.due_at is not None:
            return self.due_at.astimezone(tz).date()
        return self.due_on

    def to_task(self, tz: ZoneInfo) -> Task:
        """Normalize into the provider-agnostic Task."""
        return Task(
            title=self.name,
            notes=self.notes,
            completed=self.completed,
            updated_at=self.modified_at,
            source_provider_id=self.gid,
            due_on=self.due_date(tz),
        )


class AsanaTaskUpdate(BaseModel):
    """Model for creating or updating a task."""

    name: str | None = None
    notes: str | None = None
    completed: bool | None = None
    due_on: date | None = None

    @classmethod
    def from_update(cls, update: TaskUpdate) -> "AsanaTaskUpdate":
        fields = update.changed_fields
        values = {}
        if "title" in fields:
            values["name"] = update.title
        if "notes" in fields:
            values["notes"] = update.notes or ""
        if "completed" in fields:
            values["completed"] = bool(update.completed)
        if "due_on" in fields:
            values["due_on"] = update.due_on
        return cls(**values)

    @classmethod
    def from_task(cls, task: Task) -> "AsanaTaskUpdate":
        values = {"name": task.title, "notes": task.notes, "completed": task.completed}
        if task.due_on is not None:
            values["due_on"] = task.due_on
        return cls(**values)

    def to_payload(self) -> dict:
        """Request body data. Explicitly set fields are sent even when None."""
        return self.model_dump(mode="json", exclude_unset=True)
