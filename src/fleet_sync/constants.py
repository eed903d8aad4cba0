import os
from pathlib import Path

"""Global constants and default path definitions for fleet-sync.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the fixed tuning values used by discovery and the daemon.
Nothing here touches the filesystem; directories are created lazily by the components
that own them.
"""

# --- Identity ---
APP_NAME = "fleet-sync"
"""str: The human-readable application name (also the logger name)."""

USER_AGENT = f"{APP_NAME}/0.1"
"""str: The User-Agent header sent to the GitHub API."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

_XDG_CACHE = os.environ.get("XDG_CACHE_HOME")
_BASE_CACHE = Path(_XDG_CACHE) if _XDG_CACHE else Path.home() / ".cache"

STATE_DIR = _BASE_STATE / "fleet-sync"
"""Path: The directory for runtime state data (ledger, lock, logs)."""

CACHE_DIR = _BASE_CACHE / "fleet-sync"
"""Path: The directory holding the discovery cache."""

STATE_FILE = STATE_DIR / "sync-state.json"
"""Path: The persisted sync ledger."""

LOCK_FILE = STATE_DIR / "daemon.lock"
"""Path: The PID-stamped single-instance lock file."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

CACHE_FILE = CACHE_DIR / "repo-cache.json"
"""Path: The persisted discovery cache."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/fleet-sync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Discovery ---
GITHUB_API_URL = "https://api.github.com"
"""str: Base URL of the GitHub REST API."""

PAGE_SIZE = 100
"""int: Repositories requested per listing page (the GitHub maximum)."""

PAGE_DELAY = 0.1
"""float: Seconds slept between listing pages."""

CACHE_TTL = 3600
"""int: Seconds a discovery cache entry stays valid."""

RATE_LIMIT_WARNING_THRESHOLD = 10
"""int: Remaining API quota below which a warning is logged."""

# --- Daemon ---
DEFAULT_INTERVAL = 6 * 3600
"""int: Default seconds between sync passes."""

INTERVAL_PRESETS = {
    "aggressive": 900,
    "frequent": 3600,
    "balanced": 6 * 3600,
    "lazy": 24 * 3600,
}
"""dict[str, int]: Named interval presets selectable via `[daemon] preset`."""
