"""Reconciliation engine.

One cycle is fetch, diff, write, persist:

1. Both listings are read in parallel. Any failure aborts the cycle before a
   single write is attempted, and the correlation store is left untouched.
2. Every known correlation is checked: deletions are propagated, edits are
   copied to the other side, concurrent edits are settled by last-writer-wins.
3. Tasks no correlation knows about get a counterpart created (Asana first,
   then Google, so a run is deterministic).
4. The correlation set is written back in one transaction.

Per-task failures are isolated: they are logged, collected on the report and
the affected record is left as it was so the next cycle retries.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from gtasks_bridge.core.models import CorrelationRecord, Side, Task, TaskUpdate
from gtasks_bridge.core.provider import TaskProvider
from gtasks_bridge.database.store import CorrelationIndex, CorrelationStore
from gtasks_bridge.errors import (
    CredentialExpired,
    NotFound,
    ProviderRejected,
    ProviderUnavailable,
    StorePersistenceFailure,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Errors that fail a single task operation without stopping the cycle
TASK_LEVEL_ERRORS = (ProviderRejected, ProviderUnavailable)

Snapshot = dict[Side, dict[str, Task]]


@dataclass
class TaskFailure:
    """A task-level write that did not go through this cycle."""

    provider: str
    operation: str
    task_id: str | None
    correlation_id: str | None
    error: str


@dataclass
class CycleReport:
    """What one reconciliation cycle did."""

    cycle_id: str
    asana_task_count: int = 0
    google_task_count: int = 0
    created_on_asana: int = 0
    created_on_google: int = 0
    updated_on_asana: int = 0
    updated_on_google: int = 0
    deleted_on_asana: int = 0
    deleted_on_google: int = 0
    markers_written: int = 0
    conflicts_resolved: int = 0
    anchors_refreshed: int = 0
    discovered: int = 0
    adopted: int = 0
    records_removed: int = 0
    failures: list[TaskFailure] = field(default_factory=list)
    persisted: bool = False
    cancelled: bool = False

    def count(self, operation: str, side: Side) -> None:
        attr = f"{operation}_on_{side.value}"
        setattr(self, attr, getattr(self, attr) + 1)

    @property
    def write_count(self) -> int:
        return (
            self.created_on_asana
            + self.created_on_google
            + self.updated_on_asana
            + self.updated_on_google
            + self.deleted_on_asana
            + self.deleted_on_google
            + self.markers_written
        )

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    def summary(self) -> dict[str, Any]:
        """Flat counters for logging."""
        return {
            "asana_task_count": self.asana_task_count,
            "google_task_count": self.google_task_count,
            "created_on_asana": self.created_on_asana,
            "created_on_google": self.created_on_google,
            "updated_on_asana": self.updated_on_asana,
            "updated_on_google": self.updated_on_google,
            "deleted_on_asana": self.deleted_on_asana,
            "deleted_on_google": self.deleted_on_google,
            "conflicts_resolved": self.conflicts_resolved,
            "adopted": self.adopted,
            "records_removed": self.records_removed,
            "failures": len(self.failures),
            "persisted": self.persisted,
            "cancelled": self.cancelled,
        }


class ReconciliationEngine:
    """Keeps one Asana project and one Google task list in sync."""

    def __init__(
        self,
        asana: TaskProvider,
        google: TaskProvider,
        store: CorrelationStore,
        should_continue: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            asana: Provider for the Asana side
            google: Provider for the Google side
            store: Durable correlation store
            should_continue: Checked between task operations; returning False
                stops the cycle early (partial results are still committed)
        """
        self.providers: dict[Side, TaskProvider] = {Side.ASANA: asana, Side.GOOGLE: google}
        self.store = store
        self.should_continue = should_continue or (lambda: True)

    async def run_cycle(self) -> CycleReport:
        """Run one full reconciliation cycle.

        Returns:
            Report of the writes made and failures seen

        Raises:
            ProviderUnavailable: If a listing could not be fetched (no writes made)
            ProviderRejected: If a listing request was refused (no writes made)
            CredentialExpired: If a credential is invalid and could not be renewed
            StorePersistenceFailure: If the correlation set could not be saved
        """
        report = CycleReport(cycle_id=uuid.uuid4().hex[:12])

        with structlog.contextvars.bound_contextvars(cycle_id=report.cycle_id):
            logger.info("sync_cycle_started")
            records = self.store.load()
            snapshot = await self._fetch_all()
            report.asana_task_count = len(snapshot[Side.ASANA])
            report.google_task_count = len(snapshot[Side.GOOGLE])

            index = CorrelationIndex(records)
            try:
                await self._reconcile_known(index, snapshot, report)
                if not report.cancelled:
                    await self._discover_unmatched(index, snapshot, report)
            except BaseException:
                self._commit_after_abort(index, report)
                raise

            self._commit(index, report)
            logger.info("sync_cycle_completed", **report.summary())

        return report

    # Phase 1

    async def _fetch_all(self) -> Snapshot:
        results = await asyncio.gather(
            self._call(Side.ASANA, self.providers[Side.ASANA].list_tasks),
            self._call(Side.GOOGLE, self.providers[Side.GOOGLE].list_tasks),
            return_exceptions=True,
        )

        errors = []
        for side, result in zip((Side.ASANA, Side.GOOGLE), results):
            if isinstance(result, BaseException):
                logger.error("sync_fetch_failed", provider=side.value, error=str(result))
                errors.append(result)
        if errors:
            # CredentialExpired takes precedence
            raise next((e for e in errors if isinstance(e, CredentialExpired)), errors[0])

        asana_tasks, google_tasks = results
        return {
            Side.ASANA: {task.source_provider_id: task for task in asana_tasks},
            Side.GOOGLE: {task.source_provider_id: task for task in google_tasks},
        }

    async def _call(self, side: Side, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Call a provider, renewing its credential once if it is rejected."""
        try:
            return await fn(*args)
        except CredentialExpired as e:
            logger.warning("provider_credential_rejected", provider=side.value, error=str(e))
            await self.providers[side].refresh_credentials()
            return await fn(*args)

    # Phase 2

    async def _reconcile_known(self, index: CorrelationIndex, snapshot: Snapshot, report: CycleReport) -> None:
        for record in index:
            if not self._keep_going(report):
                return

            if record.is_pending:
                source = record.source_side
                if record.task_id(source) not in snapshot[source]:
                    index.remove(record)
                    report.records_removed += 1
                    logger.info(
                        "pending_correlation_dropped",
                        correlation_id=record.correlation_id,
                        provider=source.value,
                        task_id=record.task_id(source),
                    )
                continue

            asana_task = snapshot[Side.ASANA].get(record.asana_task_id)
            google_task = snapshot[Side.GOOGLE].get(record.google_task_id)

            if asana_task is None and google_task is None:
                record.mark_deleted()
                index.remove(record)
                report.records_removed += 1
                logger.info("correlation_retired", correlation_id=record.correlation_id, reason="both_deleted")
            elif asana_task is None:
                await self._propagate_deletion(index, snapshot, record, Side.ASANA, report)
            elif google_task is None:
                await self._propagate_deletion(index, snapshot, record, Side.GOOGLE, report)
            else:
                await self._reconcile_pair(record, {Side.ASANA: asana_task, Side.GOOGLE: google_task}, report)

    async def _propagate_deletion(
        self,
        index: CorrelationIndex,
        snapshot: Snapshot,
        record: CorrelationRecord,
        deleted_side: Side,
        report: CycleReport,
    ) -> None:
        target = deleted_side.other
        task_id = record.task_id(target)
        try:
            await self._call(target, self.providers[target].delete_task, task_id)
            report.count("deleted", target)
        except NotFound:
            logger.info("task_already_deleted", provider=target.value, task_id=task_id)
        except TASK_LEVEL_ERRORS as e:
            self._record_failure(report, target, "delete_task", task_id, record, e)
            return

        # Gone from the provider; discovery must not copy it back
        snapshot[target].pop(task_id, None)
        record.mark_deleted()
        index.remove(record)
        report.records_removed += 1
        logger.info(
            "deletion_propagated",
            correlation_id=record.correlation_id,
            deleted_on=deleted_side.value,
            provider=target.value,
            task_id=task_id,
        )

    async def _reconcile_pair(self, record: CorrelationRecord, tasks: dict[Side, Task], report: CycleReport) -> None:
        changed = {side: tasks[side].updated_at != record.last_known(side) for side in Side}
        if not any(changed.values()):
            return

        if all(changed.values()):
            # Last writer wins; an exact tie goes to Asana
            if tasks[Side.ASANA].updated_at >= tasks[Side.GOOGLE].updated_at:
                winner = Side.ASANA
            else:
                winner = Side.GOOGLE
            report.conflicts_resolved += 1
            logger.info(
                "concurrent_edit_resolved",
                correlation_id=record.correlation_id,
                winner=winner.value,
                asana_updated_at=tasks[Side.ASANA].updated_at.isoformat(),
                google_updated_at=tasks[Side.GOOGLE].updated_at.isoformat(),
            )
        else:
            winner = Side.ASANA if changed[Side.ASANA] else Side.GOOGLE

        await self._push(record, winner, tasks, report)

    async def _push(self, record: CorrelationRecord, source: Side, tasks: dict[Side, Task], report: CycleReport) -> bool:
        """Copy the ``source`` side's content onto the other side.

        Returns:
            True if both sides now agree and the record was anchored
        """
        target = source.other
        counterpart_id = record.asana_task_id if target is Side.GOOGLE else None
        update = tasks[source].diff(tasks[target], counterpart_id=counterpart_id)

        if update.is_empty:
            record.mark_synced(tasks[Side.ASANA].updated_at, tasks[Side.GOOGLE].updated_at)
            report.anchors_refreshed += 1
            return True

        target_id = tasks[target].source_provider_id
        try:
            written = await self._call(target, self.providers[target].update_task, target_id, update)
        except NotFound:
            # Picked up as a deletion next cycle
            logger.info("update_target_missing", provider=target.value, task_id=target_id)
            return False
        except TASK_LEVEL_ERRORS as e:
            self._record_failure(report, target, "update_task", target_id, record, e)
            return False

        anchors = {source: tasks[source].updated_at, target: written.updated_at}
        record.mark_synced(anchors[Side.ASANA], anchors[Side.GOOGLE])
        report.count("updated", target)
        logger.info(
            "task_change_propagated",
            correlation_id=record.correlation_id,
            source=source.value,
            provider=target.value,
            task_id=target_id,
            fields=sorted(update.changed_fields),
        )
        return True

    # Phase 3

    async def _discover_unmatched(self, index: CorrelationIndex, snapshot: Snapshot, report: CycleReport) -> None:
        # Google tasks we created earlier carry the Asana gid in their notes
        marked: dict[str, Task] = {}
        for google_task in snapshot[Side.GOOGLE].values():
            if google_task.counterpart_id and index.find_by_google_id(google_task.source_provider_id) is None:
                marked.setdefault(google_task.counterpart_id, google_task)

        for side in (Side.ASANA, Side.GOOGLE):
            for task in list(snapshot[side].values()):
                if not self._keep_going(report):
                    return

                record = index.find(side, task.source_provider_id)
                if record is None and side is Side.GOOGLE and self._awaiting_adoption(index, snapshot, task):
                    # Its Asana task is listed but adoption did not complete; retried next cycle
                    logger.info(
                        "marked_task_awaiting_adoption",
                        task_id=task.source_provider_id,
                        asana_task_id=task.counterpart_id,
                    )
                    continue
                if record is None:
                    record = CorrelationRecord.pending_from(side, task)
                    index.add(record)
                    report.discovered += 1
                    logger.info(
                        "task_discovered",
                        provider=side.value,
                        task_id=task.source_provider_id,
                        correlation_id=record.correlation_id,
                    )
                elif record.source_side is not side:
                    continue

                if side is Side.ASANA:
                    google_task = marked.pop(task.source_provider_id, None)
                    if google_task is not None and index.find_by_google_id(google_task.source_provider_id) is None:
                        await self._adopt(index, record, task, google_task, report)
                        continue

                await self._create_counterpart(index, record, side, task, report)

    async def _adopt(
        self,
        index: CorrelationIndex,
        record: CorrelationRecord,
        asana_task: Task,
        google_task: Task,
        report: CycleReport,
    ) -> None:
        """Re-link an Asana task to the Google task already carrying its marker."""
        index.link(record, Side.GOOGLE, google_task.source_provider_id)
        logger.info(
            "counterpart_adopted",
            correlation_id=record.correlation_id,
            asana_task_id=asana_task.source_provider_id,
            google_task_id=google_task.source_provider_id,
        )
        if await self._push(record, Side.ASANA, {Side.ASANA: asana_task, Side.GOOGLE: google_task}, report):
            report.adopted += 1
        else:
            index.unlink(record, Side.GOOGLE)

    async def _create_counterpart(
        self, index: CorrelationIndex, record: CorrelationRecord, side: Side, task: Task, report: CycleReport
    ) -> None:
        target = side.other
        counterpart_id = task.source_provider_id if target is Side.GOOGLE else None
        try:
            created = await self._call(target, self.providers[target].create_task, task.for_counterpart(counterpart_id))
        except (NotFound, *TASK_LEVEL_ERRORS) as e:
            self._record_failure(report, target, "create_task", task.source_provider_id, record, e)
            return

        index.link(record, target, created.source_provider_id)
        anchors = {side: task.updated_at, target: created.updated_at}
        record.mark_synced(anchors[Side.ASANA], anchors[Side.GOOGLE])
        report.count("created", target)
        logger.info(
            "counterpart_created",
            correlation_id=record.correlation_id,
            source=side.value,
            provider=target.value,
            task_id=created.source_provider_id,
        )

        if target is Side.ASANA:
            await self._write_marker(record, task, created.source_provider_id, report)

    async def _write_marker(self, record: CorrelationRecord, google_task: Task, asana_task_id: str, report: CycleReport) -> None:
        """Stamp the new Asana gid onto a Google-originated task."""
        update = TaskUpdate(notes=google_task.notes, counterpart_id=asana_task_id)
        try:
            written = await self._call(
                Side.GOOGLE, self.providers[Side.GOOGLE].update_task, google_task.source_provider_id, update
            )
        except (NotFound, *TASK_LEVEL_ERRORS) as e:
            logger.warning(
                "counterpart_marker_not_written",
                correlation_id=record.correlation_id,
                task_id=google_task.source_provider_id,
                error=str(e),
            )
            return

        record.set_last_known(Side.GOOGLE, written.updated_at)
        report.markers_written += 1

    @staticmethod
    def _awaiting_adoption(index: CorrelationIndex, snapshot: Snapshot, google_task: Task) -> bool:
        asana_task_id = google_task.counterpart_id
        if asana_task_id is None or asana_task_id not in snapshot[Side.ASANA]:
            return False
        owner = index.find_by_asana_id(asana_task_id)
        return owner is None or owner.is_pending

    # Phase 4

    def _commit(self, index: CorrelationIndex, report: CycleReport) -> None:
        self.store.save(index.records)
        report.persisted = True

    def _commit_after_abort(self, index: CorrelationIndex, report: CycleReport) -> None:
        """Save what the interrupted cycle already did."""
        try:
            self._commit(index, report)
        except StorePersistenceFailure as e:
            logger.error("sync_partial_commit_failed", error=str(e))
        logger.warning("sync_cycle_interrupted", **report.summary())

    def _keep_going(self, report: CycleReport) -> bool:
        if report.cancelled:
            return False
        if not self.should_continue():
            report.cancelled = True
            logger.info("sync_cycle_cancelled")
            return False
        return True

    def _record_failure(
        self,
        report: CycleReport,
        side: Side,
        operation: str,
        task_id: str | None,
        record: CorrelationRecord | None,
        error: Exception,
    ) -> None:
        failure = TaskFailure(
            provider=side.value,
            operation=operation,
            task_id=task_id,
            correlation_id=record.correlation_id if record else None,
            error=str(error),
        )
        report.failures.append(failure)
        logger.warning(
            "task_sync_failed",
            provider=failure.provider,
            operation=operation,
            task_id=task_id,
            correlation_id=failure.correlation_id,
            error=failure.error,
        )
