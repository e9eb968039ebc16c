"""Fixed-interval trigger for reconciliation cycles."""

import asyncio

import structlog

from gtasks_bridge.errors import CredentialExpired, ProviderError, StorePersistenceFailure
from gtasks_bridge.sync.engine import CycleReport, ReconciliationEngine
from gtasks_bridge.utils.shutdown import ShutdownHandler

logger = structlog.get_logger(__name__)

# Longest single sleep, so a shutdown request is noticed quickly
SLEEP_SLICE_SECONDS = 0.5


class SyncScheduler:
    """Runs a cycle every ``interval_seconds``, at most one at a time.

    A tick that arrives while the previous cycle is still running is skipped,
    never queued. A failed cycle is reported and the next tick runs as usual.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        interval_seconds: float,
        shutdown_handler: ShutdownHandler | None = None,
    ) -> None:
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.shutdown_handler = shutdown_handler

        self._current: asyncio.Task | None = None
        self.cycles_run = 0
        self.skipped_ticks = 0
        self.consecutive_failures = 0
        self.last_report: CycleReport | None = None

    @property
    def cycle_running(self) -> bool:
        return self._current is not None and not self._current.done()

    @property
    def stopping(self) -> bool:
        return self.shutdown_handler is not None and self.shutdown_handler.shutdown_requested

    def trigger(self) -> asyncio.Task | None:
        """Start a cycle now unless one is already running.

        Returns:
            The task running the cycle, or None if the tick was skipped
        """
        if self.cycle_running:
            self.skipped_ticks += 1
            logger.warning("sync_tick_skipped", reason="cycle_in_progress", skipped_ticks=self.skipped_ticks)
            return None

        self._current = asyncio.create_task(self.run_once(), name="sync-cycle")
        if self.shutdown_handler is not None:
            self.shutdown_handler.track_task(self._current)
        return self._current

    async def run_once(self) -> CycleReport | None:
        """Run one cycle and report its outcome.

        Returns:
            The cycle report, or None if the cycle failed
        """
        self.cycles_run += 1
        try:
            report = await self.engine.run_cycle()
        except CredentialExpired as e:
            logger.critical(
                "credentials_invalid",
                provider=e.provider,
                error=str(e),
                action="operator intervention required",
            )
        except StorePersistenceFailure as e:
            logger.error("sync_cycle_unpersisted", error=str(e))
        except ProviderError as e:
            logger.warning("sync_cycle_aborted", provider=e.provider, error=str(e), error_type=type(e).__name__)
        except Exception as e:
            logger.error("sync_cycle_failed", error=str(e), exc_info=True)
        else:
            self.last_report = report
            self.consecutive_failures = 0
            if report.has_failures:
                logger.warning("sync_cycle_partial", cycle_id=report.cycle_id, failures=len(report.failures))
            return report

        self.consecutive_failures += 1
        return None

    async def run_forever(self) -> None:
        """Tick until shutdown is requested, then wait for the cycle in flight.

        The wait is bounded by the shutdown handler's ``shutdown_timeout``; a
        cycle still running after that is cancelled, which commits the work it
        already finished.
        """
        logger.info("scheduler_started", interval_seconds=self.interval_seconds)

        while not self.stopping:
            self.trigger()
            await self._sleep_until_next_tick()

        if self.cycle_running:
            timeout = self.shutdown_handler.shutdown_timeout
            logger.info("scheduler_waiting_for_cycle", timeout=timeout)
            done, _ = await asyncio.wait({self._current}, timeout=timeout)
            if not done:
                logger.warning("scheduler_cycle_cancelled", reason="shutdown_timeout_exceeded", timeout=timeout)
                self._current.cancel()
                await asyncio.wait({self._current})

        logger.info(
            "scheduler_stopped",
            cycles_run=self.cycles_run,
            skipped_ticks=self.skipped_ticks,
        )

    async def _sleep_until_next_tick(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.interval_seconds
        while not self.stopping:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, SLEEP_SLICE_SECONDS))
