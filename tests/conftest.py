"""
Pytest configuration and fixtures for XDM capture tests.
"""

import sys
from pathlib import Path

import pytest

# Add project root and tests dir (for fakes) to path
PROJECT_ROOT = Path(__file__).parent.parent
TESTS_DIR = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(TESTS_DIR))

from fakes import RecordingSleep  # noqa: E402
from store.sqlite import EventStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest."""
    # Add custom markers
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


@pytest.fixture
def store(tmp_path):
    """Fresh on-disk event store, closed after the test."""
    s = EventStore(tmp_path / "xdm.sqlite")
    yield s
    s.close()


@pytest.fixture
def sleep():
    """Fake sleep that records requested delays instead of waiting."""
    return RecordingSleep()
