import logging
from pathlib import Path

from .constants import APP_NAME
from .models import SyncStatus
from .storage import atomic_write_json, read_json

logger = logging.getLogger(APP_NAME)


class SyncStateStore:
    """Owns the persisted sync ledger file.

    The store only loads and saves whole documents. Counting and upserting
    happen on the caller's copy between a `load` and the matching `save`.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load_existing(self) -> SyncStatus | None:
        """Returns the ledger, or None if it is absent or corrupt."""
        try:
            data = read_json(self.path)
            if data is None:
                return None
            return SyncStatus.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable sync state {self.path}: {e}")
            return None

    def load(self) -> SyncStatus:
        """Returns the ledger, or a zero-valued one if absent or corrupt."""
        return self.load_existing() or SyncStatus()

    def save(self, status: SyncStatus) -> None:
        """Atomically overwrites the ledger.

        Raises:
            OSError: If the state directory or file cannot be written.
        """
        atomic_write_json(self.path, status.to_dict())
