import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from .cache import DiscoveryCache
from .config import DiscoveryConfig
from .constants import APP_NAME, PAGE_DELAY, PAGE_SIZE, RATE_LIMIT_WARNING_THRESHOLD
from .errors import DiscoveryError
from .github import RepositoryLister
from .models import RateLimitStatus, Repository

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class DiscoveryFilters:
    """Which discovered repositories are handed to the executor.

    Attributes:
        include_archived (bool): Keep archived repositories.
        include_private (bool): Keep private repositories.
        exclude (frozenset[str]): Repository names to drop.
    """

    include_archived: bool = False
    include_private: bool = True
    exclude: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_config(cls, conf: DiscoveryConfig) -> "DiscoveryFilters":
        return cls(
            include_archived=conf.include_archived,
            include_private=conf.include_private,
            exclude=frozenset(conf.exclude),
        )


def filter_repositories(
    repos: Iterable[Repository], filters: DiscoveryFilters
) -> list[Repository]:
    """Projects a repository list through the filters without side effects.

    Order is preserved. Applied on every read, cached or live, so that the
    cache always holds the complete list.
    """
    filtered = [
        repo
        for repo in repos
        if (filters.include_archived or not repo.archived)
        and (filters.include_private or not repo.private)
        and repo.name not in filters.exclude
    ]
    logger.debug(f"Filtered to {len(filtered)} repositories")
    return filtered


class RepoDiscoverer:
    """Lists an organization's repositories through the discovery cache.

    Args:
        lister (RepositoryLister): The paginated listing transport.
        cache (DiscoveryCache): Where the unfiltered list is kept between calls.
        organization (str | None): Default organization for `discover`.
        filters (DiscoveryFilters | None): Default filters for `discover`.
        page_size (int): Repositories requested per page.
        page_delay (float): Seconds slept between pages.
        sleep (Callable[[float], None]): Sleep function (swapped out in tests).
    """

    def __init__(
        self,
        lister: RepositoryLister,
        cache: DiscoveryCache,
        organization: str | None = None,
        filters: DiscoveryFilters | None = None,
        page_size: int = PAGE_SIZE,
        page_delay: float = PAGE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.lister = lister
        self.cache = cache
        self.organization = organization
        self.filters = filters or DiscoveryFilters()
        self.page_size = page_size
        self.page_delay = page_delay
        self._sleep = sleep

    def discover(
        self,
        organization: str | None = None,
        filters: DiscoveryFilters | None = None,
        force_refresh: bool = False,
    ) -> list[Repository]:
        """Returns the filtered repository list, fetching it if the cache misses.

        Args:
            organization (str | None): Overrides the default organization.
            filters (DiscoveryFilters | None): Overrides the default filters.
            force_refresh (bool): Skip the cache read and always fetch.

        Returns:
            list[Repository]: The filtered repositories.

        Raises:
            ValueError: If no organization is known.
            DiscoveryError: If the live fetch fails and no usable cache exists.
        """
        org = organization or self.organization
        if not org:
            raise ValueError("No organization configured for discovery")
        active_filters = filters or self.filters

        if not force_refresh:
            cached = self.cache.read(org)
            if cached is not None:
                return filter_repositories(cached, active_filters)

        logger.info(f"DISCOVERY: Listing repositories in {org}...")
        self.check_rate_limit()

        try:
            repos = self._fetch_all(org)
        except DiscoveryError as e:
            fallback = self.cache.read(org)
            if fallback is None:
                logger.error(f"DISCOVERY FAILED {org}: {e}")
                raise
            logger.warning(
                f"DISCOVERY FAILED {org}: {e}. Falling back to cached list."
            )
            return filter_repositories(fallback, active_filters)

        logger.info(f"DISCOVERED: {len(repos)} total repositories in {org}")
        self.cache.write(org, repos)
        self.check_rate_limit()

        return filter_repositories(repos, active_filters)

    def _fetch_all(self, organization: str) -> list[Repository]:
        repos: list[Repository] = []
        page = 1

        while True:
            logger.debug(f"Fetching page {page}...")
            batch = self.lister.list_repositories(organization, page, self.page_size)
            repos.extend(batch)

            # A short page marks the end of the list.
            if len(batch) < self.page_size:
                break

            page += 1
            self._sleep(self.page_delay)

        return repos

    def rate_limit_status(self) -> RateLimitStatus:
        """Returns the current API quota straight from the transport."""
        return self.lister.rate_limit()

    def check_rate_limit(self) -> bool:
        """Logs the API quota, warning when it is nearly exhausted.

        Never throttles and never raises: a failed probe is logged and treated
        as healthy.

        Returns:
            bool: False if the remaining quota is below the warning threshold.
        """
        try:
            status = self.lister.rate_limit()
        except DiscoveryError as e:
            logger.debug(f"Failed to check rate limit: {e}")
            return True

        logger.info(
            f"RATE LIMIT: {status.remaining}/{status.limit} "
            f"(resets at {status.reset_at:%H:%M:%S} UTC)"
        )
        if status.remaining < RATE_LIMIT_WARNING_THRESHOLD:
            logger.warning(
                f"RATE LIMIT LOW: only {status.remaining} requests remaining."
            )
            return False
        return True
