"""Shared test doubles for discovery and the daemon."""

import datetime

from fleet_sync.models import RateLimitStatus, Repository

UTC = datetime.timezone.utc
T0 = datetime.datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


def make_repo(name: str, org: str = "acme", **kwargs: object) -> Repository:
    """Builds a Repository with sensible defaults."""
    fields: dict = {
        "name": name,
        "full_name": f"{org}/{name}",
        "clone_url": f"https://github.com/{org}/{name}.git",
        "ssh_url": f"git@github.com:{org}/{name}.git",
    }
    fields.update(kwargs)
    return Repository(**fields)


class FakeLister:
    """In-memory RepositoryLister serving fixed pages."""

    def __init__(
        self,
        repos: list[Repository],
        remaining: int = 5000,
        error: Exception | None = None,
        rate_error: Exception | None = None,
    ) -> None:
        self.repos = repos
        self.remaining = remaining
        self.error = error
        self.rate_error = rate_error
        self.calls: list[tuple[str, int, int]] = []
        self.rate_calls = 0

    def list_repositories(
        self, organization: str, page: int, per_page: int
    ) -> list[Repository]:
        self.calls.append((organization, page, per_page))
        if self.error:
            raise self.error
        start = (page - 1) * per_page
        return self.repos[start : start + per_page]

    def rate_limit(self) -> RateLimitStatus:
        self.rate_calls += 1
        if self.rate_error:
            raise self.rate_error
        return RateLimitStatus(
            limit=5000,
            remaining=self.remaining,
            reset_at=T0 + datetime.timedelta(hours=1),
        )


class FakeClock:
    """A controllable wall clock; every call advances by `step`."""

    def __init__(
        self,
        start: datetime.datetime = T0,
        step: datetime.timedelta = datetime.timedelta(0),
    ) -> None:
        self.now = start
        self.step = step
        self.issued: list[datetime.datetime] = []

    def __call__(self) -> datetime.datetime:
        current = self.now
        self.issued.append(current)
        self.now = current + self.step
        return current

    def advance(self, **kwargs: float) -> None:
        self.now += datetime.timedelta(**kwargs)
