import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, CACHE_TTL
from .models import Repository, parse_iso, to_iso, utc_now
from .storage import atomic_write_json, read_json

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class DiscoveryCacheEntry:
    """The full, unfiltered repository list fetched for one organization."""

    organization: str
    fetched_at: datetime.datetime
    repositories: tuple[Repository, ...]

    def age(self, now: datetime.datetime) -> datetime.timedelta:
        return now - self.fetched_at


class DiscoveryCache:
    """A TTL-bounded, disk-persisted snapshot of discovered repositories.

    The cache holds at most one entry. An entry is only ever returned whole:
    when it is expired, belongs to another organization, or cannot be parsed,
    reads report a miss and discovery falls through to a live fetch.
    """

    def __init__(
        self,
        path: Path,
        ttl: int | float = CACHE_TTL,
        clock: Callable[[], datetime.datetime] = utc_now,
    ) -> None:
        self.path = path
        self.ttl = datetime.timedelta(seconds=ttl)
        self._clock = clock

    def entry(self) -> DiscoveryCacheEntry | None:
        """Loads the raw entry without any validity checks.

        Returns:
            DiscoveryCacheEntry | None: The entry, or None if absent or unreadable.
        """
        try:
            data = read_json(self.path)
            if data is None:
                return None
            fetched_at = parse_iso(data["lastFetch"])
            if fetched_at is None:
                raise ValueError("empty lastFetch")
            return DiscoveryCacheEntry(
                organization=str(data["organization"]),
                fetched_at=fetched_at,
                repositories=tuple(
                    Repository.from_dict(r) for r in data["repositories"]
                ),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.debug(f"Cache read error ({self.path}): {e}")
            return None

    def read(self, organization: str) -> list[Repository] | None:
        """Returns the cached repositories if the entry is fresh and matches.

        Args:
            organization (str): The organization being discovered.

        Returns:
            list[Repository] | None: The cached list, or None on any miss.
        """
        entry = self.entry()
        if entry is None:
            return None

        if entry.organization != organization:
            logger.debug(
                f"Cache belongs to '{entry.organization}', not '{organization}'."
            )
            return None

        if entry.age(self._clock()) >= self.ttl:
            logger.debug(f"Cache for '{organization}' expired.")
            return None

        logger.info(
            f"CACHE HIT: Using cached repository list ({len(entry.repositories)} repos)"
        )
        return list(entry.repositories)

    def write(self, organization: str, repositories: list[Repository]) -> None:
        """Replaces the cache entry with a freshly fetched list.

        Write failures are logged and otherwise ignored; the next read is
        simply a miss.
        """
        payload = {
            "repositories": [r.to_dict() for r in repositories],
            "lastFetch": to_iso(self._clock()),
            "organization": organization,
        }
        try:
            atomic_write_json(self.path, payload)
            logger.info(f"CACHED: {len(repositories)} repositories for {organization}")
        except OSError as e:
            logger.warning(f"Cache write error ({self.path}): {e}")

    def clear(self) -> bool:
        """Deletes the cache file.

        Returns:
            bool: True if a file was removed, False if there was nothing to remove
                or it could not be removed.
        """
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Cache clear error ({self.path}): {e}")
            return False
        logger.info("CACHE CLEARED")
        return True
