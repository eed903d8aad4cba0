import datetime
import enum
import logging
import os
import signal
import sys
import threading
from collections.abc import Callable
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType
from typing import Any

from .config import Paths
from .constants import APP_NAME, DEFAULT_INTERVAL, LOG_FILE
from .errors import AlreadyRunningError, ExecutorTimeoutError, StateDirectoryError
from .executor import SyncExecutor, invoke
from .lock import ProcessLock
from .models import SyncResult, SyncStatus, to_iso, utc_now
from .state import SyncStateStore

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class DaemonState(enum.Enum):
    """Lifecycle of a SyncDaemon instance."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class SyncDaemon:
    """Runs the sync executor once per interval under a single-instance lock.

    Scheduling is re-armed after each pass completes, so passes never overlap
    and a slow executor pushes later passes back rather than piling them up.
    The wait between passes is a cancellable tick: `stop()` ends it at once.

    Args:
        executor (SyncExecutor): Invoked exactly once per pass.
        interval (float): Seconds between the end of a pass and the next start.
        enabled (bool): When False only the initial pass runs.
        paths (Paths | None): File locations. Defaults to the XDG layout.
        executor_timeout (float | None): Seconds before a pass counts as failed.
        lock (ProcessLock | None): Override for the lock (tests).
        clock (Callable[[], datetime.datetime]): Wall-clock source.
        handle_signals (bool): Install SIGINT/SIGTERM handlers while running.
    """

    def __init__(
        self,
        executor: SyncExecutor,
        interval: float = DEFAULT_INTERVAL,
        enabled: bool = True,
        paths: Paths | None = None,
        executor_timeout: float | None = None,
        lock: ProcessLock | None = None,
        clock: Callable[[], datetime.datetime] = utc_now,
        handle_signals: bool = True,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")

        self.executor = executor
        self.interval = interval
        self.enabled = enabled
        self.paths = paths or Paths()
        self.executor_timeout = executor_timeout
        self.lock = lock or ProcessLock(self.paths.lock_file, clock=clock)
        self.store = SyncStateStore(self.paths.state_file)
        self.handle_signals = handle_signals
        self._clock = clock

        self._state = DaemonState.IDLE
        self._shutdown_requested = False
        self._lock_held = False
        self._pass_in_flight = False
        self._tick = threading.Event()
        self._guard = threading.RLock()
        self._previous_handlers: dict[int, Any] = {}

    @property
    def state(self) -> DaemonState:
        return self._state

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def start(self) -> None:
        """Acquires the lock, runs the first pass, then schedules until stopped.

        Blocks for the life of the daemon. With scheduling disabled, returns
        after the initial pass.

        Raises:
            StateDirectoryError: If the state or lock directory is unusable.
            AlreadyRunningError: If another live instance holds the lock.
        """
        if self._state is not DaemonState.IDLE:
            logger.warning(f"Daemon already {self._state.value}; start ignored.")
            return

        self._begin()
        self._install_signal_handlers()
        try:
            self._state = DaemonState.RUNNING
            logger.info(
                f"DAEMON STARTED: pid {os.getpid()}, interval {self.interval}s"
            )

            # The first pass always runs, even with scheduling disabled.
            self.run_pass()

            if not self.enabled:
                logger.info("Scheduled sync is disabled; initial pass only.")
                return

            self._schedule_loop()
        finally:
            self.stop()
            self._restore_signal_handlers()

    def run_once(self) -> SyncResult:
        """Performs a single locked pass without scheduling another.

        Raises:
            StateDirectoryError: If the state or lock directory is unusable.
            AlreadyRunningError: If another live instance holds the lock.
        """
        if self._state is not DaemonState.IDLE:
            raise RuntimeError(f"Daemon already {self._state.value}")

        self._begin()
        try:
            self._state = DaemonState.RUNNING
            return self.run_pass()
        finally:
            self.stop()

    def stop(self) -> None:
        """Stops future passes and releases the lock.

        Idempotent. An in-flight pass is not interrupted; it finishes and
        persists, and no further pass is started. The lock stays held until
        that pass is on disk, so no other instance can start in between.
        """
        with self._guard:
            if self._state in (
                DaemonState.IDLE,
                DaemonState.SHUTTING_DOWN,
                DaemonState.STOPPED,
            ):
                return

            self._shutdown_requested = True
            self._state = DaemonState.SHUTTING_DOWN
            logger.info("Stopping daemon gracefully...")

            # Cancel the pending tick.
            self._tick.set()

            if self._pass_in_flight:
                logger.info("Waiting for the in-flight pass to finish...")
                return

            self._finish_shutdown()

    def _finish_shutdown(self) -> None:
        if self._lock_held:
            self.lock.release()
            self._lock_held = False

        self._state = DaemonState.STOPPED
        logger.info("DAEMON STOPPED")

    def run_pass(self) -> SyncResult:
        """Invokes the executor once and persists the outcome.

        Never raises: executor errors and timeouts are recorded as failed
        passes. The ledger is saved before this returns, so the next pass is
        only ever scheduled after this one is on disk.

        Returns:
            SyncResult: The executor's (or the synthesized failure) result.
        """
        with self._guard:
            self._pass_in_flight = True
        try:
            return self._execute_pass()
        finally:
            with self._guard:
                self._pass_in_flight = False
                # A stop() that arrived mid-pass left the lock for us to release.
                if self._state is DaemonState.SHUTTING_DOWN:
                    self._finish_shutdown()

    def _execute_pass(self) -> SyncResult:
        started_at = self._clock()
        logger.info(f"SYNC START [{to_iso(started_at)}]")

        try:
            result = invoke(self.executor, self.executor_timeout)
        except ExecutorTimeoutError as e:
            result = SyncResult(success=False, message=str(e))
        except Exception as e:
            logger.exception("SYNC ERROR")
            result = SyncResult(success=False, message=str(e) or type(e).__name__)

        if result.success:
            logger.info(f"SYNC OK: {result.message}")
        else:
            logger.error(f"SYNC FAILED: {result.message}")

        next_sync = self._clock() + datetime.timedelta(seconds=self.interval)

        status = self.store.load()
        status.record_pass(result.success, started_at, next_sync)
        status.upsert_repositories(result.repositories)
        try:
            self.store.save(status)
        except OSError as e:
            logger.error(f"STATE ERROR: Could not persist sync state. {e}")

        logger.info(f"Next sync at {to_iso(next_sync)}")
        return result

    def _begin(self) -> None:
        self._state = DaemonState.STARTING
        try:
            self._prepare_directories()
            acquired = self.lock.try_acquire()
        except StateDirectoryError:
            self._state = DaemonState.STOPPED
            raise

        if not acquired:
            self._state = DaemonState.STOPPED
            record = self.lock.read()
            raise AlreadyRunningError(record.pid if record else None)
        self._lock_held = True

    def _prepare_directories(self) -> None:
        for directory in self.paths.state_directories():
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StateDirectoryError(
                    f"Cannot create state directory {directory}: {e}"
                ) from e
            if not os.access(directory, os.W_OK):
                raise StateDirectoryError(
                    f"State directory {directory} is not writable"
                )

    def _schedule_loop(self) -> None:
        while True:
            # Re-arm check: a shutdown only ever prevents future passes.
            if self._shutdown_requested:
                return
            if self._tick.wait(timeout=self.interval):
                return
            if self._shutdown_requested:
                return
            self.run_pass()

    def _handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        if self._shutdown_requested:
            return
        logger.info(f"Received {signal.Signals(signum).name}")
        self.stop()

    def _install_signal_handlers(self) -> None:
        if not self.handle_signals:
            return
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread; signal handlers not installed.")
            return
        for sig in SHUTDOWN_SIGNALS:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()

    @staticmethod
    def is_running(paths: Paths | None = None) -> bool:
        """Checks whether a live daemon holds the lock for these paths."""
        paths = paths or Paths()
        return ProcessLock(paths.lock_file).holder_alive()

    @staticmethod
    def get_status(paths: Paths | None = None) -> SyncStatus | None:
        """Reads the persisted ledger, or None if there is none yet."""
        paths = paths or Paths()
        return SyncStateStore(paths.state_file).load_existing()


def setup_logging(
    interactive: bool,
    log_file: Path = LOG_FILE,
    max_log_size: int = 5 * 1024 * 1024,
    stream_level: int = logging.INFO,
) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to file/stderr
                            with rotation enabled.
        log_file (Path): Destination of the rotating file log.
        max_log_size (int): Bytes before the file log rotates.
        stream_level (int): Minimum level echoed to the console stream.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Always log to a stream (captured by systemd/launchd in daemon mode).
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(stream_level)
    logger.addHandler(stream_handler)

    if not interactive:
        # In daemon mode, rotate logs to file.
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=max_log_size,
                backupCount=5,
            )
        except OSError as e:
            logger.warning(f"Could not open log file {log_file}: {e}")
            return
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
