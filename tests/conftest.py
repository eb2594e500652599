"""
Root test configuration and fixtures for the swap engine.

This conftest.py provides common fixtures for all tests:
- an in-memory repository seeded through tests/fixtures/builders.py
- a mock PocketBase client for adapter and API tests
- a config loader reset so tunables never leak between tests
"""

from __future__ import annotations

import os
import sys
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add project root to path to allow imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from swapping.config import ConfigLoader  # noqa: E402
from swapping.data import InMemorySwapRepository  # noqa: E402

# API settings read the environment once; keep tests away from a real server
os.environ.setdefault("SKIP_PB_AUTH", "true")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("POCKETBASE_ADMIN_PASSWORD", "test-only-password")

FIXED_NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def create_mock_pocketbase() -> Mock:
    """Create a mock PocketBase instance with empty collections."""
    mock_pb = Mock()
    mock_collection = Mock()

    mock_list_response = Mock()
    mock_list_response.items = []
    mock_list_response.total_items = 0

    mock_collection.get_full_list = Mock(return_value=[])
    mock_collection.get_list = Mock(return_value=mock_list_response)
    mock_collection.get_one = Mock()
    mock_collection.create = Mock(return_value=Mock(id="mock-id"))
    mock_collection.update = Mock()
    mock_collection.auth_with_password = Mock(return_value=True)

    mock_pb.collection = Mock(return_value=mock_collection)
    return mock_pb


@pytest.fixture
def mock_pocketbase() -> Mock:
    return create_mock_pocketbase()


@pytest.fixture
def repository() -> InMemorySwapRepository:
    return InMemorySwapRepository()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture(autouse=True)
def reset_config_loader():
    """Every test starts from the schema defaults."""
    ConfigLoader.reset()
    yield
    ConfigLoader.reset()
