"""Shared fixtures."""

import logging

import pytest

from port_sync.config import Config
from port_sync.exceptions import MappingFailedError


@pytest.fixture
def config():
    return Config(log_file="", verify_attempts=5, verify_delay=2)


@pytest.fixture
def mapping_failed():
    return MappingFailedError("no mapping returned by gateway 10.2.0.1")


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger("port_sync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
