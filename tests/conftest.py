"""Pytest configuration and fixtures for suitebackup tests."""

import logging

import pytest
from hypothesis import settings, Phase

from suitebackup.logger import LOGGER_NAME

# Configure hypothesis to use fewer examples for faster test runs
# Disable shrinking phase to speed up tests further
settings.register_profile(
    "fast",
    max_examples=10,
    deadline=10000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate]
)
settings.register_profile("ci", max_examples=50, deadline=10000)
settings.register_profile("dev", max_examples=5, deadline=10000)

# Use the fast profile by default
settings.load_profile("fast")


@pytest.fixture(autouse=True)
def reset_suitebackup_logger():
    """Drop handlers installed by setup_logging() so tests don't share log files."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
