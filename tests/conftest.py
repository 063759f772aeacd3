"""
Shared fixtures and fakes for the session core tests.
"""

import sys
import os

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "lajan_learning", "src"))

from lajan_learning import auth_listener
from lajan_learning.config import Settings
from lajan_learning.errors import RemoteServiceError
from lajan_learning.memory import (
    HistoryNavigator,
    InMemoryIdentityProvider,
    InMemoryProgressRecordService,
    InMemorySnapshotStore,
    InMemoryUserRecordService,
)
from lajan_learning.progress import ProgressStore
from lajan_learning.session_store import SessionStore

EMAIL = "ada@example.com"
PASSWORD = "secret-pass"


class FlakyUserRecordService(InMemoryUserRecordService):
    """User records whose reads and writes can be switched off."""

    def __init__(self, latency: float = 0.0):
        super().__init__(latency)
        self.fail_reads = False
        self.fail_writes = False
        self.update_calls = []

    async def get(self, user_id):
        if self.fail_reads:
            raise RemoteServiceError("profile service unavailable")
        return await super().get(user_id)

    async def update(self, user_id, fields):
        self.update_calls.append(dict(fields))
        if self.fail_writes:
            raise RemoteServiceError("profile service unavailable")
        await super().update(user_id, fields)


class FlakyProgressRecordService(InMemoryProgressRecordService):
    def __init__(self, latency: float = 0.0):
        super().__init__(latency)
        self.fail = False

    async def get(self, user_id):
        if self.fail:
            raise RemoteServiceError("progress service unavailable")
        return await super().get(user_id)

    async def create_if_absent(self, user_id, defaults):
        if self.fail:
            raise RemoteServiceError("progress service unavailable")
        return await super().create_if_absent(user_id, defaults)

    async def save(self, user_id, record):
        if self.fail:
            raise RemoteServiceError("progress service unavailable")
        await super().save(user_id, record)


class BrokenSnapshotStore(InMemorySnapshotStore):
    async def set(self, key, value):
        raise OSError("disk full")


@pytest.fixture(autouse=True)
def release_auth_listener_guard():
    """Each test starts without a live auth subscription."""
    yield
    active = auth_listener._active
    if active is not None and active.active:
        active._handle()
    auth_listener._subscribed = False
    auth_listener._active = None


@pytest.fixture
def settings():
    return Settings(remote_timeout_seconds=1.0, reconcile_enabled=False)


@pytest.fixture
def identity():
    return InMemoryIdentityProvider()


@pytest.fixture
def users():
    return FlakyUserRecordService()


@pytest.fixture
def progress_records():
    return FlakyProgressRecordService()


@pytest.fixture
def snapshots():
    return InMemorySnapshotStore()


@pytest.fixture
def navigator():
    return HistoryNavigator()


@pytest.fixture
def progress(progress_records, settings):
    return ProgressStore(progress_records, settings)


@pytest.fixture
def store(identity, users, snapshots, settings, progress):
    return SessionStore(identity, users, snapshots, settings, progress=progress)


def seed_account(identity, users, **record):
    """Create an account and its user record; returns the user id."""
    user_id = identity.add_account(EMAIL, PASSWORD, name="Ada")
    users.records[user_id] = {"email": EMAIL, "name": "Ada", "role": "user", **record}
    return user_id


ONBOARDED = {
    "learningStyle": "visual",
    "preferredTopics": ["budgeting"],
    "knowledgeLevel": 2,
}
