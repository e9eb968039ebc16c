"""Data models for Google Tasks entities."""

import re
from datetime import UTC, date, datetime

from pydantic import BaseModel

from gtasks_bridge.core.models import Task, TaskUpdate

STATUS_COMPLETED = "completed"
STATUS_NEEDS_ACTION = "needsAction"

# Notes written by the bridge end with "\n---\n<asana gid>"
_MARKER_RE = re.compile(r"(?:^|\n)---\n(\d+)[ \t\r\n]*\Z")


def split_marker(notes: str | None) -> tuple[str, str | None]:
    """Separate the user's notes from a trailing counterpart marker.

    Returns:
        Tuple of (notes without marker, Asana gid or None)
    """
    if not notes:
        return "", None
    match = _MARKER_RE.search(notes)
    if match is None:
        return notes, None
    return notes[: match.start()], match.group(1)


def with_marker(notes: str | None, counterpart_id: str | None) -> str:
    """Append the counterpart marker to ``notes``."""
    notes = notes or ""
    if not counterpart_id:
        return notes
    return f"{notes}\n---\n{counterpart_id}"


def format_due(due_on: date | None) -> str | None:
    # Google stores only the date part of ``due``
    if due_on is None:
        return None
    return f"{due_on.isoformat()}T00:00:00.000Z"


class GoogleTask(BaseModel):
    """Google Tasks task resource."""

    id: str
    title: str | None = None
    notes: str | None = None
    status: str = STATUS_NEEDS_ACTION
    updated: datetime
    due: datetime | None = None
    completed: datetime | None = None
    deleted: bool = False
    hidden: bool = False
    parent: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    @property
    def is_subtask(self) -> bool:
        return self.parent is not None

    def to_task(self) -> Task:
        """Normalize into the provider-agnostic Task."""
        notes, counterpart_id = split_marker(self.notes)
        due_on = self.due.astimezone(UTC).date() if self.due is not None else None
        return Task(
            title=self.title,
            notes=notes,
            completed=self.is_completed,
            updated_at=self.updated,
            source_provider_id=self.id,
            due_on=due_on,
            counterpart_id=counterpart_id,
        )


def insert_body(task: Task) -> dict:
    """Request body for ``tasks.insert``."""
    body = {
        "title": task.title,
        "notes": with_marker(task.notes, task.counterpart_id),
        "status": STATUS_COMPLETED if task.completed else STATUS_NEEDS_ACTION,
    }
    if task.due_on is not None:
        body["due"] = format_due(task.due_on)
    return body


def patch_body(update: TaskUpdate) -> dict:
    """Request body for ``tasks.patch``; only changed fields are included."""
    fields = update.changed_fields
    body = {}
    if "title" in fields:
        body["title"] = update.title or ""
    if "notes" in fields:
        body["notes"] = with_marker(update.notes, update.counterpart_id)
    if "completed" in fields:
        if update.completed:
            body["status"] = STATUS_COMPLETED
        else:
            body["status"] = STATUS_NEEDS_ACTION
            body["completed"] = None
    if "due_on" in fields:
        body["due"] = format_due(update.due_on)
    return body
