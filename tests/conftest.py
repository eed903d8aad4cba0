import logging
from collections.abc import Iterator

import pytest

from fleet_sync.constants import APP_NAME


@pytest.fixture(autouse=True)
def reset_app_logger() -> Iterator[None]:
    """Drops handlers that CLI commands attach to the shared app logger."""
    yield
    logger = logging.getLogger(APP_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
