import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CACHE_FILE,
    CACHE_TTL,
    CONFIG_FILE,
    DEFAULT_INTERVAL,
    GITHUB_API_URL,
    INTERVAL_PRESETS,
    LOCK_FILE,
    LOG_FILE,
    STATE_FILE,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> int:
    """Converts human-readable time strings (e.g., '6h', '30m', '1 day') to seconds."""
    if isinstance(value, (int, float)):
        return int(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr|hour|d|day)s?$",
        str(value).strip().lower(),
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
        "hour": 3600,
        "d": 86400,
        "day": 86400,
    }
    return int(num * multiplier[unit])


@dataclass(frozen=True)
class Paths:
    """Every file location the daemon touches.

    Injected into the cache, lock, state store and scheduler so that separate
    instances (and tests) never share a filesystem namespace by accident.

    Attributes:
        state_file (Path): The sync ledger.
        lock_file (Path): The single-instance lock.
        cache_file (Path): The discovery cache.
        log_file (Path): The rotating daemon log.
    """

    state_file: Path = STATE_FILE
    lock_file: Path = LOCK_FILE
    cache_file: Path = CACHE_FILE
    log_file: Path = LOG_FILE

    @classmethod
    def under(cls, root: Path) -> "Paths":
        """Lays out all files beneath a single directory."""
        return cls(
            state_file=root / "sync-state.json",
            lock_file=root / "daemon.lock",
            cache_file=root / "cache" / "repo-cache.json",
            log_file=root / "daemon.log",
        )

    def state_directories(self) -> list[Path]:
        """Returns the distinct directories holding the ledger and the lock."""
        return list(dict.fromkeys([self.state_file.parent, self.lock_file.parent]))


@dataclass
class GitHubConfig:
    """GitHub API settings.

    Attributes:
        organization (str): The organization whose repositories are reconciled.
        token_env (str): Name of the environment variable holding the API token.
        api_url (str): Base URL of the REST API (override for GitHub Enterprise).
        timeout (float): Per-request timeout in seconds.
    """

    organization: str = ""
    token_env: str = "GITHUB_TOKEN"
    api_url: str = GITHUB_API_URL
    timeout: float = 20.0

    def token(self) -> str | None:
        """Reads the API token from the configured environment variable."""
        value = os.environ.get(self.token_env, "").strip()
        return value or None


@dataclass
class DiscoveryConfig:
    """Repository discovery settings.

    Attributes:
        include_archived (bool): Keep archived repositories in the result.
        include_private (bool): Keep private repositories in the result.
        exclude (list[str]): Repository names never synced (appended across layers).
        cache_ttl (int): Seconds a cached repository list stays valid.
    """

    include_archived: bool = False
    include_private: bool = True
    exclude: list[str] = field(default_factory=list)
    cache_ttl: int = CACHE_TTL


@dataclass
class DaemonConfig:
    """Daemon operational settings.

    Attributes:
        interval (int): Seconds between the end of one pass and the start of the next.
        enabled (bool): When False, the daemon performs the initial pass only.
        executor_timeout (int | None): Seconds before a pass is abandoned as failed.
        command (str | None): Command template run once per repository on each pass.
        command_timeout (int | None): Seconds allowed for each command invocation.
        max_workers (int): Parallel command invocations per pass.
        preset (str | None): A named interval preset (e.g. 'frequent').
    """

    interval: int = DEFAULT_INTERVAL
    enabled: bool = True
    executor_timeout: int | None = None
    command: str | None = None
    command_timeout: int | None = None
    max_workers: int = 4
    preset: str | None = None

    def apply_preset(self) -> None:
        """Overwrites the interval based on the selected preset."""
        if self.preset is None:
            return
        if self.preset not in INTERVAL_PRESETS:
            logger.warning(f"Unknown daemon preset '{self.preset}'. Ignoring.")
            return
        self.interval = INTERVAL_PRESETS[self.preset]


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        github (GitHubConfig): API settings.
        discovery (DiscoveryConfig): Discovery filters and cache settings.
        daemon (DaemonConfig): Scheduling settings.
        limits (LimitsConfig): Resource limits.
    """

    github: GitHubConfig = field(default_factory=GitHubConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from disk, applying defaults where necessary.

        Args:
            path (Path | None): The TOML file to read. Defaults to CONFIG_FILE.

        Returns:
            Config: The populated configuration object.
        """
        instance = cls()
        config_path = path or CONFIG_FILE
        if config_path.exists():
            instance._merge_from_file(config_path)
        return instance

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            for section_name in ("github", "daemon", "limits", "discovery"):
                if section_name not in data:
                    continue
                updates = data[section_name]
                if not isinstance(updates, dict):
                    logger.warning(
                        f"Config section [{section_name}] must be a table, "
                        f"got {type(updates).__name__}. Ignoring."
                    )
                    continue

                # Extract exclude list to prevent it from being overwritten during dataclass update
                new_excludes = []
                if section_name == "discovery":
                    new_excludes = updates.pop("exclude", [])
                section = self._update_dataclass(
                    section_name, getattr(self, section_name), updates
                )
                setattr(self, section_name, section)

                if section_name == "daemon":
                    self.daemon.apply_preset()
                if new_excludes:
                    self.discovery.exclude.extend(new_excludes)
                    self.discovery.exclude = list(dict.fromkeys(self.discovery.exclude))

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                # Route specific keys through our parsers
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in [
                    "interval",
                    "executor_timeout",
                    "command_timeout",
                    "cache_ttl",
                ]:
                    seconds = parse_time(v)
                    if seconds <= 0:
                        raise ValueError(f"Duration must be positive, got '{v}'")
                    filtered_updates[k] = seconds
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
