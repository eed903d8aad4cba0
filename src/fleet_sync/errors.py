"""Typed exceptions and their process exit codes."""

import datetime


class FleetSyncError(Exception):
    """Base exception for the application."""

    exit_code = 1


class ConfigError(FleetSyncError):
    """Configuration is missing or unusable (e.g. no organization, no token)."""

    exit_code = 2


class AlreadyRunningError(FleetSyncError):
    """Another live daemon instance holds the process lock."""

    exit_code = 3

    def __init__(self, pid: int | None = None) -> None:
        self.pid = pid
        holder = f" (pid {pid})" if pid is not None else ""
        super().__init__(f"Another instance is already running{holder}")


class StateDirectoryError(FleetSyncError):
    """The state or lock directory cannot be created or written."""

    exit_code = 4


class DiscoveryError(FleetSyncError):
    """The live repository listing failed (network, auth, bad response)."""

    exit_code = 5

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RateLimitExceededError(DiscoveryError):
    """The API quota is exhausted; callers should defer rather than retry."""

    exit_code = 6

    def __init__(
        self,
        message: str = "GitHub API rate limit exceeded",
        *,
        status_code: int | None = None,
        reset_at: datetime.datetime | None = None,
    ) -> None:
        self.reset_at = reset_at
        super().__init__(message, status_code=status_code)


class ExecutorTimeoutError(FleetSyncError):
    """A sync pass outlived its configured executor timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Sync timed out after {timeout}s")
