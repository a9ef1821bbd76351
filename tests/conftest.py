"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for rds_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from rds_mock import FakeClock, MockRdsClient  # noqa: E402

from rds_reconciler.client import ServiceClient  # noqa: E402


@pytest.fixture
def rds() -> MockRdsClient:
    return MockRdsClient()


@pytest.fixture
def service_client(rds: MockRdsClient) -> ServiceClient:
    return ServiceClient(rds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
