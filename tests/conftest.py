import logging
import os
import shutil
import tempfile

import pytest

from nexti18n.logging_config import LOGGER_NAME


@pytest.fixture(autouse=True)
def restore_package_logger():
    """
    Function-scoped, autouse fixture that undoes ``setup_logger`` between
    tests so handlers and file paths from one test never leak into the next.
    """
    logger = logging.getLogger(LOGGER_NAME)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield
    for handler in logger.handlers:
        if handler not in saved[0]:
            handler.close()
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


@pytest.fixture
def project_dir():
    """A throwaway Next.js-like project with an empty src/ and public/locales/."""
    root = tempfile.mkdtemp(prefix="nexti18n_test_")
    os.makedirs(os.path.join(root, "src"))
    os.makedirs(os.path.join(root, "public", "locales"))
    yield root
    shutil.rmtree(root, ignore_errors=True)
