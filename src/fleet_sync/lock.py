import datetime
import logging
import os
from collections.abc import Callable
from pathlib import Path

from .constants import APP_NAME
from .errors import StateDirectoryError
from .models import LockRecord, utc_now
from .storage import atomic_write_json, read_json

logger = logging.getLogger(APP_NAME)


def pid_alive(pid: int) -> bool:
    """Probes a process with signal 0.

    Args:
        pid (int): The process identifier to check.

    Returns:
        bool: True if the process exists (even if owned by another user).
    """
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # Exists, but we may not signal it.
    except OSError:
        return False
    return True


class ProcessLock:
    """A PID-stamped lock file giving advisory single-instance exclusion.

    A record whose process is no longer alive is a stale lock and is reclaimed
    by the next acquirer. The existence check and the write are not atomic;
    two instances started at the same instant can both succeed.

    Args:
        path (Path): The lock file.
        pid (int | None): The identity to record. Defaults to the current process.
        probe (Callable[[int], bool]): Liveness check for a recorded pid.
        clock (Callable[[], datetime.datetime]): Source of the acquisition time.
    """

    def __init__(
        self,
        path: Path,
        pid: int | None = None,
        probe: Callable[[int], bool] = pid_alive,
        clock: Callable[[], datetime.datetime] = utc_now,
    ) -> None:
        self.path = path
        self.pid = pid if pid is not None else os.getpid()
        self._probe = probe
        self._clock = clock

    def read(self) -> LockRecord | None:
        """Returns the current record, or None if absent or unreadable."""
        try:
            data = read_json(self.path)
            if data is None:
                return None
            return LockRecord.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug(f"Unreadable lock file {self.path}: {e}")
            return None

    def holder_alive(self) -> bool:
        """Checks whether the recorded holder is a live process."""
        record = self.read()
        return record is not None and self._probe(record.pid)

    def try_acquire(self) -> bool:
        """Takes the lock unless a live process already holds it.

        Returns:
            bool: True if the lock is now held by this instance.

        Raises:
            StateDirectoryError: If the lock file cannot be written.
        """
        if self.path.exists():
            record = self.read()
            if record is not None and self._probe(record.pid):
                logger.warning(
                    f"LOCKED: pid {record.pid} holds {self.path} "
                    f"since {record.started_at:%Y-%m-%d %H:%M:%S}"
                )
                return False

            if record is None:
                logger.warning(f"STALE LOCK: Removing unreadable lock file {self.path}")
            else:
                logger.warning(f"STALE LOCK: pid {record.pid} is gone. Reclaiming.")

        record = LockRecord(pid=self.pid, started_at=self._clock())
        try:
            # os.replace overwrites any stale record in place.
            atomic_write_json(self.path, record.to_dict())
        except OSError as e:
            raise StateDirectoryError(f"Cannot write lock file {self.path}: {e}") from e

        logger.info(f"LOCK ACQUIRED: pid {self.pid}")
        return True

    def release(self) -> None:
        """Deletes the lock file. Safe to call when no lock is held."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"ERROR: Could not remove lock file {self.path}. {e}")
