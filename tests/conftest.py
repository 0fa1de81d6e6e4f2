from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import UTC, datetime

import pytest

from regime_dca.core.config import Settings


@pytest.fixture(autouse=True)
def _isolated_package_logger() -> Iterator[None]:
    package_logger = logging.getLogger("regime_dca")
    handlers = list(package_logger.handlers)
    level = package_logger.level
    yield
    package_logger.handlers[:] = handlers
    package_logger.setLevel(level)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def start() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)
