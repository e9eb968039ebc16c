"""Pytest configuration and shared fixtures."""

import itertools
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from gtasks_bridge.core.models import Task, TaskUpdate
from gtasks_bridge.database.session import cleanup_db_connections
from gtasks_bridge.database.store import CorrelationStore
from gtasks_bridge.errors import NotFound
from gtasks_bridge.sync.engine import ReconciliationEngine

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)


class Clock:
    """Shared, manually advanced clock for the fake providers."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def tick(self, seconds: int = 1) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeProvider:
    """In-memory TaskProvider with failure injection.

    Every mutation stamps the task with a new ``updated_at`` from the shared
    clock, like a real provider would.
    """

    def __init__(self, name: str, clock: Clock, id_prefix: str, stores_counterpart: bool = False) -> None:
        self.name = name
        self.clock = clock
        self.tasks: dict[str, Task] = {}
        self.calls: list[tuple[str, str | None, object]] = []
        self.refresh_calls = 0
        self.refresh_error: Exception | None = None
        self.stores_counterpart = stores_counterpart
        self._ids = (f"{id_prefix}{n}" for n in itertools.count(1))
        self._failures: list[list] = []

    # Test helpers (not part of the provider contract)

    def seed(self, title: str, **fields) -> Task:
        task_id = next(self._ids)
        task = Task(title=title, updated_at=self.clock.tick(), source_provider_id=task_id, **fields)
        self.tasks[task_id] = task
        return task

    def edit(self, task_id: str, at: datetime | None = None, **fields) -> Task:
        updated_at = at if at is not None else self.clock.tick()
        task = self.tasks[task_id].model_copy(update={**fields, "updated_at": updated_at})
        self.tasks[task_id] = task
        return task

    def remove(self, task_id: str) -> None:
        del self.tasks[task_id]

    def fail(self, operation: str, error: Exception, key: str | None = None, times: int | None = 1) -> None:
        """Make ``operation`` raise ``error``; ``times=None`` fails forever."""
        self._failures.append([operation, key, error, times])

    def clear_failures(self) -> None:
        self._failures.clear()

    @property
    def mutations(self) -> list[tuple[str, str | None, object]]:
        return [call for call in self.calls if call[0] != "list_tasks"]

    def _check(self, operation: str, key: str | None = None) -> None:
        for rule in self._failures:
            rule_operation, rule_key, error, remaining = rule
            if rule_operation != operation or (rule_key is not None and rule_key != key):
                continue
            if remaining == 0:
                continue
            if remaining is not None:
                rule[3] = remaining - 1
            raise error

    # TaskProvider

    async def list_tasks(self) -> list[Task]:
        self._check("list_tasks")
        self.calls.append(("list_tasks", None, None))
        return list(self.tasks.values())

    async def create_task(self, task: Task) -> Task:
        self._check("create_task", task.title)
        task_id = next(self._ids)
        created = task.model_copy(
            update={
                "source_provider_id": task_id,
                "updated_at": self.clock.tick(),
                "counterpart_id": task.counterpart_id if self.stores_counterpart else None,
            }
        )
        self.tasks[task_id] = created
        self.calls.append(("create_task", task_id, task))
        return created

    async def update_task(self, task_id: str, update: TaskUpdate) -> Task:
        self._check("update_task", task_id)
        if task_id not in self.tasks:
            raise NotFound(self.name, f"task {task_id} not found", status=404)
        fields = {name: getattr(update, name) for name in update.changed_fields}
        if self.stores_counterpart and "notes" in fields:
            fields["counterpart_id"] = update.counterpart_id
        self.calls.append(("update_task", task_id, update))
        return self.edit(task_id, **fields)

    async def delete_task(self, task_id: str) -> None:
        self._check("delete_task", task_id)
        if task_id not in self.tasks:
            raise NotFound(self.name, f"task {task_id} not found", status=404)
        del self.tasks[task_id]
        self.calls.append(("delete_task", task_id, None))

    async def refresh_credentials(self) -> None:
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def asana_provider(clock: Clock) -> FakeProvider:
    """Fake Asana project."""
    return FakeProvider("asana", clock, id_prefix="1200")


@pytest.fixture
def google_provider(clock: Clock) -> FakeProvider:
    """Fake Google task list; keeps the counterpart marker like the real one."""
    return FakeProvider("google", clock, id_prefix="g-", stores_counterpart=True)


@pytest.fixture
def db_path(tmp_path: Path) -> Iterator[Path]:
    yield tmp_path / "state" / "correlations.sqlite"
    cleanup_db_connections()


@pytest.fixture
def store(db_path: Path) -> CorrelationStore:
    return CorrelationStore(db_path)


@pytest.fixture
def engine(asana_provider: FakeProvider, google_provider: FakeProvider, store: CorrelationStore) -> ReconciliationEngine:
    return ReconciliationEngine(asana_provider, google_provider, store)


@pytest.fixture
def sample_asana_task_data() -> dict:
    """Raw task data as returned by the Asana API."""
    return {
        "gid": "1200001",
        "name": "Write report",
        "notes": "Quarterly numbers",
        "completed": False,
        "modified_at": "2025-01-01T12:00:00.000Z",
        "due_on": "2025-01-10",
        "due_at": None,
        "parent": None,
    }


@pytest.fixture
def sample_google_task_data() -> dict:
    """Raw task resource as returned by the Google Tasks API."""
    return {
        "kind": "tasks#task",
        "id": "g-abc",
        "etag": '"LTE2"',
        "title": "Write report",
        "notes": "Quarterly numbers\n---\n1200001",
        "status": "needsAction",
        "updated": "2025-01-01T12:00:05.000Z",
        "due": "2025-01-10T00:00:00.000Z",
        "position": "00000000000000000001",
        "links": [],
    }
