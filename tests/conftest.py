"""
Shared fixtures: every test gets its own SQLite file under tmp_path.
"""

import pytest

from dojo.memory.activity import ActivityFeed, ActivityNotifier
from dojo.memory.store import EnrollmentStore
from dojo.session.manager import SessionManager


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "dojo.db"


@pytest.fixture
def store(db_path):
    return EnrollmentStore(db_path)


@pytest.fixture
def sessions(db_path):
    return SessionManager(db_path)


@pytest.fixture
def feed(db_path):
    return ActivityFeed(db_path)


@pytest.fixture
def notifier(feed):
    return ActivityNotifier(feed)


@pytest.fixture
def enrollment(store):
    """A fresh white-belt enrollment."""
    return store.create_enrollment("user-1", "python")
