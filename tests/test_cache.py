"""Tests for the TTL-bounded discovery cache."""

import json
from pathlib import Path
from unittest.mock import MagicMock

from fleet_sync.cache import DiscoveryCache
from helpers import FakeClock, make_repo


def test_write_then_read_within_ttl(tmp_path: Path) -> None:
    """Verifies that a fresh entry for the same organization is a hit.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
    """
    clock = FakeClock()
    cache = DiscoveryCache(tmp_path / "repo-cache.json", ttl=3600, clock=clock)
    repos = [make_repo("api"), make_repo("web", archived=True)]

    cache.write("acme", repos)
    clock.advance(minutes=59)

    assert cache.read("acme") == repos


def test_entry_expires_at_ttl(tmp_path: Path) -> None:
    """Verifies that an entry exactly TTL old is already a miss."""
    clock = FakeClock()
    cache = DiscoveryCache(tmp_path / "repo-cache.json", ttl=3600, clock=clock)
    cache.write("acme", [make_repo("api")])

    clock.advance(seconds=3600)

    assert cache.read("acme") is None
    # The entry itself survives; only validity has lapsed.
    assert cache.entry() is not None


def test_other_organization_is_a_miss(tmp_path: Path) -> None:
    cache = DiscoveryCache(tmp_path / "repo-cache.json", clock=FakeClock())
    cache.write("acme", [make_repo("api")])

    assert cache.read("globex") is None


def test_on_disk_layout(tmp_path: Path) -> None:
    """Verifies the cache file's keys and timestamp format."""
    path = tmp_path / "repo-cache.json"
    cache = DiscoveryCache(path, clock=FakeClock())
    cache.write("acme", [make_repo("api")])

    data = json.loads(path.read_text())

    assert set(data) == {"repositories", "lastFetch", "organization"}
    assert data["organization"] == "acme"
    assert data["lastFetch"] == "2024-01-01T12:00:00.000Z"
    assert data["repositories"][0]["full_name"] == "acme/api"


def test_corrupt_cache_is_a_miss(tmp_path: Path) -> None:
    path = tmp_path / "repo-cache.json"
    path.write_text('{"organization": "acme", "lastFetch": "yesterday"}')
    cache = DiscoveryCache(path)

    assert cache.entry() is None
    assert cache.read("acme") is None


def test_write_failure_is_not_fatal(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that a failed cache write only logs a warning.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    mocker.patch(
        "fleet_sync.cache.atomic_write_json", side_effect=PermissionError("ro")
    )
    mock_logger = mocker.patch("fleet_sync.cache.logger")
    cache = DiscoveryCache(tmp_path / "repo-cache.json")

    cache.write("acme", [make_repo("api")])

    mock_logger.warning.assert_called_once()
    assert "Cache write error" in mock_logger.warning.call_args[0][0]


def test_clear(tmp_path: Path) -> None:
    path = tmp_path / "repo-cache.json"
    cache = DiscoveryCache(path)
    cache.write("acme", [make_repo("api")])

    assert cache.clear() is True
    assert not path.exists()
    assert cache.clear() is False


def test_clear_failure_is_logged(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that an undeletable cache file is reported, not raised.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    path = tmp_path / "repo-cache.json"
    cache = DiscoveryCache(path)
    cache.write("acme", [make_repo("api")])
    mocker.patch.object(Path, "unlink", side_effect=PermissionError("denied"))
    mock_logger = mocker.patch("fleet_sync.cache.logger")

    assert cache.clear() is False

    mock_logger.error.assert_called_once()
    assert "Cache clear error" in mock_logger.error.call_args[0][0]
