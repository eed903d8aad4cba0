"""fleet-sync: Scheduled reconciliation of an organization's repositories.

This package provides repository discovery (with a TTL-bounded disk cache), a
PID-stamped single-instance lock, a persisted sync ledger, and the daemon that
runs one sync pass per interval on top of them, plus the command-line interface.
"""

from . import (
    cache,
    cli,
    config,
    constants,
    daemon,
    discovery,
    errors,
    executor,
    github,
    lock,
    models,
    state,
    storage,
)

__all__ = [
    "cache",
    "cli",
    "config",
    "constants",
    "daemon",
    "discovery",
    "errors",
    "executor",
    "github",
    "lock",
    "models",
    "state",
    "storage",
]
