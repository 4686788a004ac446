import logging

import pytest

from utils import logging as log_utils


@pytest.fixture
def restore_logging():
    """Remove handlers installed by setup_logging and restore the root level."""
    root = logging.getLogger()
    level = root.level
    yield
    while log_utils._installed_handlers:
        handler = log_utils._installed_handlers.pop()
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)
