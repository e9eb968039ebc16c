"""PID file guarding the correlation store against a second bridge process."""

import os
import signal
import time
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


class PIDLockError(Exception):
    """Raised when PID lock cannot be acquired."""

    pass


class PIDManager:
    """Manages the PID file of the running bridge.

    Only one bridge may write a given correlation store, so the PID file lives
    next to the database.
    """

    def __init__(self, pid_file: Path | str):
        """Initialize PID manager.

        Args:
            pid_file: Path to the PID file
        """
        self.pid_file = Path(pid_file)
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self._locked = False

    def _read_pid(self) -> int | None:
        try:
            return int(self.pid_file.read_text().strip())
        except (ValueError, OSError):
            return None

    @staticmethod
    def _is_alive(pid: int) -> bool:
        try:
            os.kill(pid, 0)  # Signal 0 only checks existence
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists but belongs to another user
            return True
        return True

    def acquire(self) -> None:
        """Acquire PID lock.

        Raises:
            PIDLockError: If lock is already held by another process
        """
        if self.pid_file.exists():
            existing_pid = self._read_pid()
            if existing_pid is None:
                logger.warning("invalid_pid_file", pid_file=str(self.pid_file))
                self.pid_file.unlink(missing_ok=True)
            elif self._is_alive(existing_pid):
                logger.error("pid_lock_held", existing_pid=existing_pid, pid_file=str(self.pid_file))
                raise PIDLockError(
                    f"Bridge already running with PID {existing_pid}. "
                    f"Use 'gtasks-bridge stop' to shut it down first."
                )
            else:
                logger.warning("stale_pid_file", existing_pid=existing_pid, pid_file=str(self.pid_file))
                self.pid_file.unlink(missing_ok=True)

        current_pid = os.getpid()
        self.pid_file.write_text(str(current_pid))

        self._locked = True
        logger.info("pid_lock_acquired", pid=current_pid, pid_file=str(self.pid_file))

    def release(self) -> None:
        """Release PID lock by removing PID file."""
        if self._locked and self.pid_file.exists():
            try:
                self.pid_file.unlink()
                logger.info("pid_lock_released", pid_file=str(self.pid_file))
            except OSError as e:
                logger.warning("pid_lock_release_failed", error=str(e), pid_file=str(self.pid_file))
            finally:
                self._locked = False

    def get_running_pid(self) -> int | None:
        """Get PID of the running bridge.

        Returns:
            PID of running process, or None if not running
        """
        if not self.pid_file.exists():
            return None
        pid = self._read_pid()
        if pid is None or not self._is_alive(pid):
            return None
        return pid

    def stop_bridge(self, timeout: int = 90) -> bool:
        """Stop the running bridge.

        Args:
            timeout: Seconds to wait for graceful shutdown before SIGKILL

        Returns:
            True if a process was stopped, False if none was running

        Raises:
            PIDLockError: If the process could not be signalled
        """
        pid = self.get_running_pid()
        if pid is None:
            logger.info("no_bridge_running")
            return False

        logger.info("stopping_bridge", pid=pid)

        try:
            os.kill(pid, signal.SIGTERM)

            elapsed = 0
            while elapsed < timeout:
                if not self._is_alive(pid):
                    logger.info("bridge_stopped_gracefully", pid=pid, elapsed=elapsed)
                    self.pid_file.unlink(missing_ok=True)
                    return True
                time.sleep(1)
                elapsed += 1

            logger.warning("bridge_timeout_forcing_kill", pid=pid, timeout=timeout)
            os.kill(pid, signal.SIGKILL)
            self.pid_file.unlink(missing_ok=True)
            return True

        except ProcessLookupError:
            logger.info("bridge_already_stopped", pid=pid)
            self.pid_file.unlink(missing_ok=True)
            return False
        except PermissionError as e:
            logger.error("bridge_stop_permission_denied", pid=pid, error=str(e))
            raise PIDLockError(f"Permission denied when trying to stop process {pid}") from e

    def __enter__(self):
        """Context manager entry."""
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.release()
        return False
