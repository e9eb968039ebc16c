"""Durable correlation store and its in-cycle lookup index."""

from collections.abc import Iterator, Mapping
from datetime import UTC, datetime
from pathlib import Path

import structlog
from sqlalchemy.exc import DatabaseError, SQLAlchemyError

from gtasks_bridge.core.models import CorrelationRecord, Side, SyncStatus
from gtasks_bridge.database.models import Correlation
from gtasks_bridge.database.session import dispose_engine, get_db_session, get_db_url, init_db
from gtasks_bridge.errors import BridgeError, StorePersistenceFailure

logger = structlog.get_logger(__name__)


class DuplicateCorrelationError(BridgeError):
    """Raised when a task id would be referenced by two correlation records."""

    pass


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def _to_row(record: CorrelationRecord) -> Correlation:
    return Correlation(
        correlation_id=record.correlation_id,
        asana_task_id=record.asana_task_id,
        google_task_id=record.google_task_id,
        last_known_asana_updated_at=_naive_utc(record.last_known_asana_updated_at),
        last_known_google_updated_at=_naive_utc(record.last_known_google_updated_at),
        last_sync_status=record.last_sync_status.value,
    )


def _to_record(row: Correlation) -> CorrelationRecord:
    return CorrelationRecord(
        correlation_id=row.correlation_id,
        asana_task_id=row.asana_task_id,
        google_task_id=row.google_task_id,
        last_known_asana_updated_at=row.last_known_asana_updated_at,
        last_known_google_updated_at=row.last_known_google_updated_at,
        last_sync_status=SyncStatus(row.last_sync_status),
    )


class CorrelationStore:
    """SQLite-backed set of correlation records.

    The full set is read once at cycle start and replaced once at cycle end,
    inside a single transaction.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_url = get_db_url(self.db_path)

    def _quarantine(self) -> None:
        """Move an unreadable database aside so the next save starts clean."""
        dispose_engine(self.db_url)
        if not self.db_path.exists():
            return
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
        target = self.db_path.with_name(f"{self.db_path.name}.unreadable-{stamp}")
        try:
            self.db_path.rename(target)
            logger.warning("correlation_store_quarantined", moved_to=str(target))
        except OSError as e:
            logger.error("correlation_store_quarantine_failed", error=str(e), db_path=str(self.db_path))

    def load(self) -> dict[str, CorrelationRecord]:
        """Load every correlation record.

        A missing database is created empty; an unreadable one is moved aside
        and treated as empty.

        Returns:
            Mapping of correlation_id to record
        """
        try:
            init_db(self.db_url)
            with get_db_session(self.db_url) as session:
                rows = session.query(Correlation).all()
                records = {row.correlation_id: _to_record(row) for row in rows}
        except DatabaseError as e:
            logger.warning("correlation_store_unreadable", db_path=str(self.db_path), error=str(e))
            self._quarantine()
            return {}
        except (SQLAlchemyError, ValueError) as e:
            logger.warning("correlation_store_unreadable", db_path=str(self.db_path), error=str(e))
            return {}

        logger.info("correlation_store_loaded", db_path=str(self.db_path), record_count=len(records))
        return records

    def save(self, records: Mapping[str, CorrelationRecord]) -> None:
        """Atomically replace the persisted set with ``records``.

        Records in the terminal Deleted state are not persisted.

        Raises:
            StorePersistenceFailure: If the transaction could not be committed
        """
        rows = [
            _to_row(record)
            for record in records.values()
            if record.last_sync_status is not SyncStatus.DELETED
        ]
        try:
            init_db(self.db_url)
            with get_db_session(self.db_url) as session:
                session.query(Correlation).delete(synchronize_session=False)
                session.add_all(rows)
        except SQLAlchemyError as e:
            logger.error("correlation_store_save_failed", db_path=str(self.db_path), error=str(e))
            raise StorePersistenceFailure(f"Could not persist correlations to {self.db_path}: {e}") from e

        logger.info("correlation_store_saved", db_path=str(self.db_path), record_count=len(rows))


class CorrelationIndex:
    """Exclusively owned, in-memory view of the correlation set for one cycle.

    Keeps O(1) lookups by either provider id current while the engine adds,
    links and removes records.
    """

    def __init__(self, records: Mapping[str, CorrelationRecord] | None = None) -> None:
        self._records: dict[str, CorrelationRecord] = {}
        self._by_id: dict[Side, dict[str, CorrelationRecord]] = {Side.ASANA: {}, Side.GOOGLE: {}}
        for record in (records or {}).values():
            self.add(record)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[CorrelationRecord]:
        return iter(list(self._records.values()))

    def __contains__(self, correlation_id: str) -> bool:
        return correlation_id in self._records

    @property
    def records(self) -> dict[str, CorrelationRecord]:
        return dict(self._records)

    def find(self, side: Side, task_id: str) -> CorrelationRecord | None:
        return self._by_id[side].get(task_id)

    def find_by_asana_id(self, task_id: str) -> CorrelationRecord | None:
        return self.find(Side.ASANA, task_id)

    def find_by_google_id(self, task_id: str) -> CorrelationRecord | None:
        return self.find(Side.GOOGLE, task_id)

    def _claim(self, side: Side, task_id: str, record: CorrelationRecord) -> None:
        existing = self._by_id[side].get(task_id)
        if existing is not None and existing.correlation_id != record.correlation_id:
            raise DuplicateCorrelationError(
                f"{side.value} task {task_id} already belongs to correlation {existing.correlation_id}"
            )
        self._by_id[side][task_id] = record

    def add(self, record: CorrelationRecord) -> None:
        """Add a record, enforcing the one-record-per-task invariant."""
        for side in Side:
            task_id = record.task_id(side)
            if task_id:
                self._claim(side, task_id, record)
        self._records[record.correlation_id] = record

    def link(self, record: CorrelationRecord, side: Side, task_id: str) -> None:
        """Attach a provider id to a record already in the index."""
        self._claim(side, task_id, record)
        record.set_task_id(side, task_id)

    def unlink(self, record: CorrelationRecord, side: Side) -> None:
        """Detach a provider id from a record."""
        task_id = record.task_id(side)
        if task_id and self._by_id[side].get(task_id) is record:
            del self._by_id[side][task_id]
        record.set_task_id(side, None)

    def remove(self, record: CorrelationRecord) -> None:
        self._records.pop(record.correlation_id, None)
        for side in Side:
            task_id = record.task_id(side)
            if task_id and self._by_id[side].get(task_id) is record:
                del self._by_id[side][task_id]
