"""Tests for repository discovery: pagination, caching, filters and quota logs."""

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from fleet_sync.cache import DiscoveryCache
from fleet_sync.discovery import DiscoveryFilters, RepoDiscoverer, filter_repositories
from fleet_sync.errors import DiscoveryError, RateLimitExceededError
from helpers import FakeClock, FakeLister, make_repo


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(tmp_path: Path, clock: FakeClock) -> DiscoveryCache:
    return DiscoveryCache(tmp_path / "repo-cache.json", ttl=3600, clock=clock)


def make_discoverer(
    lister: FakeLister, cache: DiscoveryCache, **kwargs: object
) -> RepoDiscoverer:
    return RepoDiscoverer(
        lister, cache, organization="acme", sleep=lambda _: None, **kwargs
    )


def test_fetches_all_pages_until_short_page(cache: DiscoveryCache) -> None:
    """Verifies pagination stops on the first page shorter than the page size.

    Args:
        cache (DiscoveryCache): The temporary cache fixture.
    """
    repos = [make_repo(f"repo-{i}") for i in range(5)]
    lister = FakeLister(repos)
    sleeps: list[float] = []
    discoverer = RepoDiscoverer(
        lister, cache, organization="acme", page_size=2, sleep=sleeps.append
    )

    result = discoverer.discover()

    assert result == repos
    assert [page for _, page, _ in lister.calls] == [1, 2, 3]
    assert sleeps == [discoverer.page_delay, discoverer.page_delay]


def test_exact_multiple_of_page_size_fetches_one_empty_page(
    cache: DiscoveryCache,
) -> None:
    lister = FakeLister([make_repo("a"), make_repo("b")])
    discoverer = make_discoverer(lister, cache, page_size=2)

    assert len(discoverer.discover()) == 2
    assert len(lister.calls) == 2


def test_cache_hit_skips_network(
    cache: DiscoveryCache, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that a second discovery within the TTL makes no API calls."""
    caplog.set_level(logging.INFO)
    lister = FakeLister([make_repo("api")])
    discoverer = make_discoverer(lister, cache)

    discoverer.discover()
    calls_after_first = len(lister.calls)
    rate_calls_after_first = lister.rate_calls

    assert discoverer.discover() == [make_repo("api")]
    assert len(lister.calls) == calls_after_first
    assert lister.rate_calls == rate_calls_after_first
    assert "CACHE HIT" in caplog.text


def test_force_refresh_bypasses_fresh_cache(cache: DiscoveryCache) -> None:
    lister = FakeLister([make_repo("api")])
    discoverer = make_discoverer(lister, cache)

    discoverer.discover()
    discoverer.discover(force_refresh=True)

    assert len(lister.calls) == 2


def test_expired_cache_refetches(cache: DiscoveryCache, clock: FakeClock) -> None:
    lister = FakeLister([make_repo("api")])
    discoverer = make_discoverer(lister, cache)

    discoverer.discover()
    clock.advance(hours=1)
    discoverer.discover()

    assert len(lister.calls) == 2


def test_cache_stores_unfiltered_list(cache: DiscoveryCache) -> None:
    """Verifies filters apply on read and never narrow what gets cached."""
    repos = [make_repo("api"), make_repo("old", archived=True)]
    discoverer = make_discoverer(FakeLister(repos), cache)

    assert discoverer.discover() == [make_repo("api")]
    assert cache.read("acme") == repos

    everything = DiscoveryFilters(include_archived=True)
    assert discoverer.discover(filters=everything) == repos


def test_live_failure_falls_back_to_cache(
    cache: DiscoveryCache, clock: FakeClock
) -> None:
    """Verifies a forced refresh that fails still serves a fresh cache entry."""
    repos = [make_repo("api")]
    cache.write("acme", repos)
    lister = FakeLister([], error=DiscoveryError("boom", status_code=502))

    assert make_discoverer(lister, cache).discover(force_refresh=True) == repos


def test_live_failure_without_cache_propagates(
    cache: DiscoveryCache, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.ERROR)
    lister = FakeLister([], error=RateLimitExceededError(status_code=403))

    with pytest.raises(RateLimitExceededError):
        make_discoverer(lister, cache).discover()

    assert "DISCOVERY FAILED acme" in caplog.text


def test_missing_organization_is_rejected(cache: DiscoveryCache) -> None:
    discoverer = RepoDiscoverer(FakeLister([]), cache)
    with pytest.raises(ValueError, match="No organization"):
        discoverer.discover()


def test_check_rate_limit_warns_when_low(
    cache: DiscoveryCache, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies the low-quota warning threshold and the info log line.

    Args:
        cache (DiscoveryCache): The temporary cache fixture.
        caplog (pytest.LogCaptureFixture): Pytest fixture for capturing logs.
    """
    caplog.set_level(logging.INFO)

    assert make_discoverer(FakeLister([], remaining=10), cache).check_rate_limit()
    assert "RATE LIMIT: 10/5000 (resets at 13:00:00 UTC)" in caplog.text
    assert "RATE LIMIT LOW" not in caplog.text

    assert not make_discoverer(FakeLister([], remaining=9), cache).check_rate_limit()
    assert "RATE LIMIT LOW: only 9 requests remaining." in caplog.text


def test_check_rate_limit_probe_failure_is_ignored(
    cache: DiscoveryCache, mocker: MagicMock
) -> None:
    """Verifies that a failed quota probe never blocks discovery.

    Args:
        cache (DiscoveryCache): The temporary cache fixture.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    mock_logger = mocker.patch("fleet_sync.discovery.logger")
    lister = FakeLister([make_repo("api")], rate_error=DiscoveryError("down"))
    discoverer = make_discoverer(lister, cache)

    assert discoverer.check_rate_limit() is True
    assert discoverer.discover() == [make_repo("api")]
    mock_logger.debug.assert_any_call("Failed to check rate limit: down")


def test_filter_repositories_preserves_order() -> None:
    repos = [
        make_repo("z-public"),
        make_repo("secret", private=True),
        make_repo("legacy", archived=True),
        make_repo("a-public"),
        make_repo("sandbox"),
    ]
    filters = DiscoveryFilters(
        include_archived=False, include_private=False, exclude=frozenset({"sandbox"})
    )

    assert [r.name for r in filter_repositories(repos, filters)] == [
        "z-public",
        "a-public",
    ]
