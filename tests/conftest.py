"""
Shared pytest fixtures for trello2planner tests
"""
import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from azure.core.credentials import AccessToken

sys.path.insert(0, str(Path(__file__).parent.parent))

from trello2planner.snapshots import SnapshotStore


@pytest.fixture
def fixtures_dir():
    """Return path to test fixtures directory"""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def simple_board_fixture(fixtures_dir):
    """Load simple board test fixture"""
    fixture_file = fixtures_dir / "simple_board.json"
    with open(fixture_file) as f:
        return json.load(f)


@pytest.fixture
def store(tmp_path):
    """Snapshot store rooted in a temporary directory"""
    return SnapshotStore(tmp_path)


@pytest.fixture
def fake_credential():
    """Credential that hands out a fixed token without signing in"""
    credential = MagicMock()
    credential.get_token.return_value = AccessToken("test-access-token", 4102444800)
    return credential
