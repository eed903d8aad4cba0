"""Value types shared by discovery, the lock, the ledger and the scheduler.

Every type here round-trips through the JSON files the daemon persists. The
on-disk key names are part of the external contract (operators read these files
directly), so serialization is explicit rather than derived from field names.
"""

import datetime
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

RepoState = Literal["success", "failed", "pending"]

REPO_STATES: tuple[str, ...] = ("success", "failed", "pending")


def utc_now() -> datetime.datetime:
    """Returns the current time as an aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def to_iso(value: datetime.datetime | None) -> str:
    """Formats a datetime as ISO8601 with a trailing 'Z' (empty string for None)."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    utc = value.astimezone(datetime.timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str | None) -> datetime.datetime | None:
    """Parses an ISO8601 timestamp, treating naive values as UTC.

    Raises:
        ValueError: If the value is non-empty but not a valid timestamp.
    """
    if not value:
        return None
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


@dataclass(frozen=True)
class Repository:
    """A repository as returned by discovery.

    Immutable once fetched. A refresh replaces the whole list rather than
    updating individual records.
    """

    name: str
    full_name: str
    private: bool = False
    archived: bool = False
    fork: bool = False
    created_at: str = ""
    updated_at: str = ""
    clone_url: str = ""
    ssh_url: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Repository":
        """Builds a Repository from a GitHub API payload or a cache record.

        Missing optional fields fall back to their defaults; `null` values from
        the API are normalized the same way.
        """
        name = data["name"]
        return cls(
            name=name,
            full_name=data.get("full_name") or name,
            private=bool(data.get("private", False)),
            archived=bool(data.get("archived") or False),
            fork=bool(data.get("fork", False)),
            created_at=data.get("created_at") or "",
            updated_at=data.get("updated_at") or "",
            clone_url=data.get("clone_url") or "",
            ssh_url=data.get("ssh_url") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "full_name": self.full_name,
            "private": self.private,
            "archived": self.archived,
            "fork": self.fork,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "clone_url": self.clone_url,
            "ssh_url": self.ssh_url,
        }


@dataclass(frozen=True)
class RateLimitStatus:
    """A snapshot of the API quota.

    Attributes:
        limit (int): Requests allowed per window.
        remaining (int): Requests left in the current window.
        reset_at (datetime.datetime): When the window resets.
    """

    limit: int
    remaining: int
    reset_at: datetime.datetime


@dataclass(frozen=True)
class LockRecord:
    """The contents of the lock file."""

    pid: int
    started_at: datetime.datetime

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LockRecord":
        pid = data["pid"]
        if not isinstance(pid, int) or isinstance(pid, bool) or pid <= 0:
            raise ValueError(f"Invalid pid in lock record: {pid!r}")
        started_at = parse_iso(data.get("startedAt")) or utc_now()
        return cls(pid=pid, started_at=started_at)

    def to_dict(self) -> dict[str, Any]:
        return {"pid": self.pid, "startedAt": to_iso(self.started_at)}


@dataclass
class RepoSyncStatus:
    """The outcome of the most recent pass that named a repository."""

    last_sync: datetime.datetime | None = None
    status: RepoState = "pending"
    message: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RepoSyncStatus":
        status = data.get("status", "pending")
        if status not in REPO_STATES:
            raise ValueError(f"Unknown repository status: {status!r}")
        return cls(
            last_sync=parse_iso(data.get("lastSync")),
            status=status,
            message=str(data.get("message", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastSync": to_iso(self.last_sync),
            "status": self.status,
            "message": self.message,
        }


@dataclass
class SyncStatus:
    """The persisted sync ledger.

    Counters only ever increase. Repository entries are upserted by each pass
    that names them and are never removed.
    """

    last_sync: datetime.datetime | None = None
    next_sync: datetime.datetime | None = None
    success_count: int = 0
    failure_count: int = 0
    repositories: dict[str, RepoSyncStatus] = field(default_factory=dict)

    @property
    def total_passes(self) -> int:
        return self.success_count + self.failure_count

    def record_pass(
        self,
        success: bool,
        started_at: datetime.datetime,
        next_sync: datetime.datetime | None,
    ) -> None:
        """Counts one completed pass and stamps its timing."""
        if success:
            self.success_count += 1
        else:
            self.failure_count += 1
        self.last_sync = started_at
        self.next_sync = next_sync

    def upsert_repositories(self, updates: Mapping[str, RepoSyncStatus]) -> None:
        """Inserts or replaces the per-repository entries named in `updates`."""
        for name, repo_status in updates.items():
            self.repositories[name] = repo_status

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SyncStatus":
        """Parses the ledger file contents.

        Raises:
            ValueError: If counters are negative or not integers.
            TypeError: If the repositories section is not an object.
        """
        success_count = data.get("successCount", 0)
        failure_count = data.get("failureCount", 0)
        for value in (success_count, failure_count):
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"Invalid counter in sync state: {value!r}")

        raw_repos = data.get("repositories", {})
        if not isinstance(raw_repos, Mapping):
            raise TypeError("'repositories' must be an object")

        return cls(
            last_sync=parse_iso(data.get("lastSync")),
            next_sync=parse_iso(data.get("nextSync")),
            success_count=success_count,
            failure_count=failure_count,
            repositories={
                name: RepoSyncStatus.from_dict(entry)
                for name, entry in raw_repos.items()
            },
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastSync": to_iso(self.last_sync),
            "nextSync": to_iso(self.next_sync),
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "repositories": {
                name: entry.to_dict() for name, entry in self.repositories.items()
            },
        }


@dataclass
class SyncResult:
    """What an executor reports back for one pass.

    Attributes:
        success (bool): Whether the pass as a whole succeeded.
        message (str): A one-line summary for the log and the ledger.
        repositories (dict[str, RepoSyncStatus]): Optional per-repository
            outcomes to upsert into the ledger.
    """

    success: bool
    message: str = ""
    repositories: dict[str, RepoSyncStatus] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> "SyncResult":
        """Normalizes an executor's return value.

        Accepts a SyncResult, or a mapping with `success` and `message` keys.

        Raises:
            TypeError: If the value has neither shape.
        """
        if isinstance(value, SyncResult):
            return value
        if isinstance(value, Mapping) and "success" in value:
            return cls(
                success=bool(value["success"]),
                message=str(value.get("message", "")),
                repositories=dict(value.get("repositories") or {}),
            )
        raise TypeError(
            f"Executor returned {type(value).__name__}; expected SyncResult "
            "or a mapping with 'success'"
        )
