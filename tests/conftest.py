"""Shared test fixtures for the task board."""

import sys
import tempfile
from pathlib import Path

import pytest

# Ensure the repository root (pkg/, board_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from pkg.taskboard.schema import MemberProfile, Scope
from pkg.taskboard.store import BoardStore
from pkg.taskboard.teams import TeamStore


@pytest.fixture
def db_path():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        path = tmp.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        Path(path + suffix).unlink(missing_ok=True)


@pytest.fixture
def store(db_path):
    return BoardStore(db_path)


@pytest.fixture
def teams(db_path):
    return TeamStore(db_path)


@pytest.fixture
def personal():
    return Scope.personal("alice")


@pytest.fixture
def roster():
    return [
        MemberProfile(member_id="u1", display_name="Kim Cheolsu", email="cs@x.com"),
        MemberProfile(member_id="u2", display_name="Cheolsu Park", email="park@x.com"),
    ]
