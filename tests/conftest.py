"""Pytest configuration for the CMMC tracker."""
from datetime import datetime, timezone

import pytest

from cmmc_tracker.data_store import DataStore
from cmmc_tracker.services import build_services
from cmmc_tracker.storage import MemoryStorage

# Monday
FIXED_NOW = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return FIXED_NOW


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def store(storage):
    return DataStore(storage)


@pytest.fixture
def services(storage):
    return build_services(storage=storage, clock=fixed_clock)
