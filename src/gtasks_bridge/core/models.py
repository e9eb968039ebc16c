"""Provider-agnostic data models for the bridge."""

import uuid
from datetime import UTC, date, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from gtasks_bridge.errors import InvalidTransition


class Side(str, Enum):
    """The two providers kept in sync."""

    ASANA = "asana"
    GOOGLE = "google"

    @property
    def other(self) -> "Side":
        return Side.GOOGLE if self is Side.ASANA else Side.ASANA


class SyncStatus(str, Enum):
    """Lifecycle state of a correlation record."""

    PENDING_CREATE_ON_ASANA = "pending_create_on_asana"
    PENDING_CREATE_ON_GOOGLE = "pending_create_on_google"
    SYNCED = "synced"
    DELETED = "deleted"

    @property
    def is_pending(self) -> bool:
        return self in (SyncStatus.PENDING_CREATE_ON_ASANA, SyncStatus.PENDING_CREATE_ON_GOOGLE)


_ALLOWED_TRANSITIONS: dict[SyncStatus, set[SyncStatus]] = {
    SyncStatus.PENDING_CREATE_ON_ASANA: {SyncStatus.SYNCED},
    SyncStatus.PENDING_CREATE_ON_GOOGLE: {SyncStatus.SYNCED},
    SyncStatus.SYNCED: {SyncStatus.SYNCED, SyncStatus.DELETED},
    SyncStatus.DELETED: set(),
}


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Task(BaseModel):
    """A task as seen on one provider, normalized to a common shape."""

    title: str
    notes: str = ""
    completed: bool = False
    updated_at: datetime
    source_provider_id: str
    due_on: date | None = None

    # Id of the matching task on the other provider, when the provider stores one
    counterpart_id: str | None = None

    @field_validator("notes", mode="before")
    @classmethod
    def _notes_never_null(cls, value: str | None) -> str:
        return value or ""

    @field_validator("title", mode="before")
    @classmethod
    def _title_never_null(cls, value: str | None) -> str:
        return value or ""

    @field_validator("updated_at")
    @classmethod
    def _updated_at_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def diff(self, target: "Task", counterpart_id: str | None = None) -> "TaskUpdate":
        """Build the update that makes ``target`` carry this task's field values.

        Only fields whose values differ are set on the returned update.

        Args:
            target: Task to be brought in line with this one
            counterpart_id: Id of this task to record on the target, if the
                target provider stores one
        """
        changes = {}
        if self.title != target.title:
            changes["title"] = self.title
        if self.notes != target.notes:
            changes["notes"] = self.notes
        if self.completed != target.completed:
            changes["completed"] = self.completed
        if self.due_on != target.due_on:
            changes["due_on"] = self.due_on
        return TaskUpdate(counterpart_id=counterpart_id, **changes)

    def for_counterpart(self, counterpart_id: str | None = None) -> "Task":
        """Copy of this task to be created on the other provider."""
        return self.model_copy(update={"counterpart_id": counterpart_id})


class TaskUpdate(BaseModel):
    """Partial task used for updates. Unset fields are left untouched."""

    title: str | None = None
    notes: str | None = None
    completed: bool | None = None
    due_on: date | None = None
    counterpart_id: str | None = None

    @property
    def changed_fields(self) -> set[str]:
        return set(self.model_fields_set) - {"counterpart_id"}

    @property
    def is_empty(self) -> bool:
        return not self.changed_fields


class CorrelationRecord(BaseModel):
    """Durable link between one Asana task and one Google task."""

    correlation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    asana_task_id: str | None = None
    google_task_id: str | None = None
    last_known_asana_updated_at: datetime | None = None
    last_known_google_updated_at: datetime | None = None
    last_sync_status: SyncStatus

    @field_validator("last_known_asana_updated_at", "last_known_google_updated_at")
    @classmethod
    def _anchors_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @classmethod
    def pending_from(cls, side: Side, task: Task) -> "CorrelationRecord":
        """Create the record for a task seen only on ``side``."""
        if side is Side.ASANA:
            return cls(
                asana_task_id=task.source_provider_id,
                last_known_asana_updated_at=task.updated_at,
                last_sync_status=SyncStatus.PENDING_CREATE_ON_GOOGLE,
            )
        return cls(
            google_task_id=task.source_provider_id,
            last_known_google_updated_at=task.updated_at,
            last_sync_status=SyncStatus.PENDING_CREATE_ON_ASANA,
        )

    @property
    def is_synced(self) -> bool:
        return self.last_sync_status is SyncStatus.SYNCED

    @property
    def is_pending(self) -> bool:
        return self.last_sync_status.is_pending

    @property
    def source_side(self) -> Side | None:
        """Side that still needs its counterpart created, for pending records."""
        if self.last_sync_status is SyncStatus.PENDING_CREATE_ON_GOOGLE:
            return Side.ASANA
        if self.last_sync_status is SyncStatus.PENDING_CREATE_ON_ASANA:
            return Side.GOOGLE
        return None

    def task_id(self, side: Side) -> str | None:
        return self.asana_task_id if side is Side.ASANA else self.google_task_id

    def last_known(self, side: Side) -> datetime | None:
        if side is Side.ASANA:
            return self.last_known_asana_updated_at
        return self.last_known_google_updated_at

    def set_task_id(self, side: Side, task_id: str | None) -> None:
        if side is Side.ASANA:
            self.asana_task_id = task_id
        else:
            self.google_task_id = task_id

    def set_last_known(self, side: Side, updated_at: datetime) -> None:
        if side is Side.ASANA:
            self.last_known_asana_updated_at = _as_utc(updated_at)
        else:
            self.last_known_google_updated_at = _as_utc(updated_at)

    def _transition(self, status: SyncStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.last_sync_status]:
            raise InvalidTransition(
                f"Correlation {self.correlation_id}: "
                f"{self.last_sync_status.value} -> {status.value} is not allowed"
            )
        self.last_sync_status = status

    def mark_synced(self, asana_updated_at: datetime, google_updated_at: datetime) -> None:
        """Record a successful write on both sides.

        Raises:
            InvalidTransition: If the record is deleted or lacks a provider id
        """
        if not (self.asana_task_id and self.google_task_id):
            raise InvalidTransition(
                f"Correlation {self.correlation_id} cannot be synced without both task ids"
            )
        self._transition(SyncStatus.SYNCED)
        self.last_known_asana_updated_at = _as_utc(asana_updated_at)
        self.last_known_google_updated_at = _as_utc(google_updated_at)

    def mark_deleted(self) -> None:
        """Terminal state; the record is removed at commit."""
        self._transition(SyncStatus.DELETED)
