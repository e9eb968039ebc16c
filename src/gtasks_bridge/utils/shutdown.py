"""Graceful shutdown handling for the bridge.

On SIGINT or SIGTERM the scheduler stops starting new cycles, the cycle in
flight is given ``shutdown_timeout`` seconds to reach its commit, and then the
registered cleanup callbacks run (database engines are disposed there).
"""

import asyncio
import os
import signal
from collections.abc import Callable

import structlog

logger = structlog.get_logger(__name__)


class ShutdownHandler:
    """Coordinates graceful shutdown of the bridge process.

    Features:
    - Catches SIGTERM and SIGINT signals
    - Lets the in-flight sync cycle finish and commit
    - Enforces a maximum wait
    - Runs cleanup callbacks once everything has stopped
    """

    def __init__(self, shutdown_timeout: int = 60):
        """Initialize shutdown handler.

        Args:
            shutdown_timeout: Maximum seconds to wait for in-flight cycles
        """
        self.shutdown_timeout = shutdown_timeout
        self._shutdown_requested = False
        self._sigint_count = 0
        self._original_sigint_handler = None
        self._original_sigterm_handler = None
        self._cleanup_callbacks: list[Callable] = []
        self._in_progress_tasks: set[asyncio.Task] = set()

    @property
    def shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_requested

    def register_cleanup_callback(self, callback: Callable) -> None:
        """Register a callback to be called during shutdown.

        Args:
            callback: Function to call during cleanup (can be sync or async)
        """
        self._cleanup_callbacks.append(callback)
        logger.debug("registered_cleanup_callback", callback=callback.__name__)

    def track_task(self, task: asyncio.Task) -> None:
        """Track an in-flight task so shutdown waits for it."""
        self._in_progress_tasks.add(task)
        task.add_done_callback(self._in_progress_tasks.discard)

    def request_shutdown(self, signum: int | None = None, frame=None) -> None:
        """Request graceful shutdown.

        A second SIGINT exits the process immediately.

        Args:
            signum: Signal number that triggered shutdown (optional)
            frame: Current stack frame (optional)
        """
        if signum == signal.SIGINT:
            self._sigint_count += 1
            if self._sigint_count >= 2:
                logger.warning("force_exit_on_second_sigint", sigint_count=self._sigint_count)
                os._exit(1)

        if self._shutdown_requested:
            logger.warning("shutdown_already_requested", signum=signum)
            return

        self._shutdown_requested = True
        signal_name = signal.Signals(signum).name if signum else "MANUAL"
        logger.info(
            "shutdown_requested",
            signal=signal_name,
            in_progress_tasks=len(self._in_progress_tasks),
        )

    def install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        self._original_sigint_handler = signal.signal(signal.SIGINT, self.request_shutdown)
        self._original_sigterm_handler = signal.signal(signal.SIGTERM, self.request_shutdown)

        logger.info("signal_handlers_installed", signals=["SIGINT", "SIGTERM"])

    def restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if self._original_sigint_handler is not None:
            signal.signal(signal.SIGINT, self._original_sigint_handler)
        if self._original_sigterm_handler is not None:
            signal.signal(signal.SIGTERM, self._original_sigterm_handler)

        logger.debug("signal_handlers_restored")

    async def wait_for_tasks(self) -> bool:
        """Wait for in-flight tasks to complete.

        Returns:
            True if all tasks completed, False if timeout occurred
        """
        if not self._in_progress_tasks:
            logger.info("no_tasks_to_wait_for")
            return True

        logger.info(
            "waiting_for_tasks",
            count=len(self._in_progress_tasks),
            timeout=self.shutdown_timeout,
        )

        try:
            await asyncio.wait_for(
                asyncio.gather(*self._in_progress_tasks, return_exceptions=True),
                timeout=self.shutdown_timeout,
            )
            logger.info("all_tasks_completed")
            return True
        except TimeoutError:
            logger.warning(
                "shutdown_timeout_exceeded",
                remaining_tasks=len(self._in_progress_tasks),
                timeout=self.shutdown_timeout,
            )
            return False

    async def run_cleanup_callbacks(self) -> None:
        """Execute all registered cleanup callbacks."""
        logger.info("running_cleanup_callbacks", count=len(self._cleanup_callbacks))

        for callback in self._cleanup_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback()
                else:
                    callback()
                logger.debug("cleanup_callback_completed", callback=callback.__name__)
            except Exception as e:
                logger.error(
                    "cleanup_callback_failed",
                    callback=callback.__name__,
                    error=str(e),
                    exc_info=True,
                )

    async def shutdown(self) -> bool:
        """Execute the shutdown sequence.

        Steps:
        1. Wait for in-flight cycles (with timeout)
        2. Run cleanup callbacks
        3. Restore signal handlers

        Returns:
            True if every tracked task finished in time
        """
        logger.info("shutdown_sequence_started")

        try:
            tasks_completed = await self.wait_for_tasks()
            await self.run_cleanup_callbacks()
            logger.info("shutdown_sequence_completed", clean_shutdown=tasks_completed)
            return tasks_completed
        except Exception as e:
            logger.error("shutdown_sequence_failed", error=str(e), exc_info=True)
            raise
        finally:
            self.restore_signal_handlers()


# Global singleton instance
_shutdown_handler: ShutdownHandler | None = None


def get_shutdown_handler(shutdown_timeout: int = 60) -> ShutdownHandler:
    """Get or create the global shutdown handler.

    Args:
        shutdown_timeout: Maximum seconds to wait for in-flight cycles

    Returns:
        Global ShutdownHandler instance
    """
    global _shutdown_handler
    if _shutdown_handler is None:
        _shutdown_handler = ShutdownHandler(shutdown_timeout=shutdown_timeout)
    return _shutdown_handler
