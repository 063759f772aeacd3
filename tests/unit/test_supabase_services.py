"""
Unit Tests for the Supabase-backed services

Uses a small fake of the Supabase client: the auth API and a table query
builder covering the calls the services make.
"""

from types import SimpleNamespace
import sys
import os

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "lajan_learning", "src"))

from lajan_learning.errors import AuthError, RemoteServiceError
from lajan_learning.supabase_services import (
    SupabaseIdentityProvider,
    SupabaseProgressRecordService,
    SupabaseUserRecordService,
    from_columns,
    to_columns,
)


class FakeApiError(Exception):
    def __init__(self, code, message):
        super().__init__(message)
        self.code = code
        self.message = message


class FakeQuery:
    def __init__(self, table, action, payload=None, key=None, ignore_duplicates=False):
        self.table = table
        self.action = action
        self.payload = payload
        self.key = key
        self.ignore_duplicates = ignore_duplicates
        self.filters = {}

    def select(self, columns):
        return FakeQuery(self.table, "select")

    def eq(self, column, value):
        self.filters[column] = value
        return self

    def limit(self, n):
        return self

    def execute(self):
        rows = self.table.rows
        if self.action == "select":
            data = [dict(r) for r in rows if all(r.get(k) == v for k, v in self.filters.items())]
        elif self.action == "upsert":
            existing = [r for r in rows if r.get(self.key) == self.payload[self.key]]
            if existing and self.ignore_duplicates:
                data = []
            elif existing:
                existing[0].update(self.payload)
                data = [dict(existing[0])]
            else:
                rows.append(dict(self.payload))
                data = [dict(self.payload)]
        else:
            data = []
            for r in rows:
                if all(r.get(k) == v for k, v in self.filters.items()):
                    r.update(self.payload)
                    data.append(dict(r))
        return SimpleNamespace(data=data)


class FakeTable:
    def __init__(self):
        self.rows = []

    def select(self, columns):
        return FakeQuery(self, "select")

    def upsert(self, row, on_conflict, ignore_duplicates=False):
        return FakeQuery(self, "upsert", row, on_conflict, ignore_duplicates)

    def update(self, fields):
        return FakeQuery(self, "update", fields)


def make_user(user_id="u1", confirmed=True):
    return SimpleNamespace(
        id=user_id,
        email="ada@example.com",
        user_metadata={"name": "Ada"},
        email_confirmed_at="2024-01-01T00:00:00Z" if confirmed else None,
    )


class FakeAuth:
    def __init__(self):
        self.callbacks = []
        self.resent = []
        self.unsubscribed = 0

    def sign_in_with_password(self, credentials):
        if credentials["password"] != "secret":
            raise FakeApiError("invalid_credentials", "Invalid login credentials")
        return SimpleNamespace(user=make_user(), session=SimpleNamespace(access_token="tok"))

    def sign_up(self, credentials):
        return SimpleNamespace(user=make_user("u2", confirmed=False), session=None)

    def sign_out(self):
        raise RuntimeError("network down")

    def resend(self, params):
        self.resent.append(params)

    def get_session(self):
        return None

    def on_auth_state_change(self, callback):
        self.callbacks.append(callback)
        return SimpleNamespace(unsubscribe=self._unsubscribe)

    def _unsubscribe(self):
        self.unsubscribed += 1


class FakeClient:
    def __init__(self):
        self.auth = FakeAuth()
        self.tables = {}

    def table(self, name):
        return self.tables.setdefault(name, FakeTable())


class TestColumnMapping:
    def test_camel_and_snake(self):
        record = {"learningStyle": "visual", "preferredTopics": ["a"], "isMinor": True}
        columns = to_columns(record)
        assert columns == {"learning_style": "visual", "preferred_topics": ["a"], "is_minor": True}
        assert from_columns(columns) == record


class TestSupabaseIdentityProvider:
    """Test suite for SupabaseIdentityProvider."""

    @pytest.fixture
    def client(self):
        return FakeClient()

    @pytest.mark.asyncio
    async def test_sign_in(self, client):
        credential = await SupabaseIdentityProvider(client).sign_in("ada@example.com", "secret")
        assert credential.user_id == "u1"
        assert credential.token == "tok"
        assert credential.verified
        assert credential.display_name == "Ada"

    @pytest.mark.asyncio
    async def test_sign_in_error_code_preserved(self, client):
        with pytest.raises(AuthError) as excinfo:
            await SupabaseIdentityProvider(client).sign_in("ada@example.com", "nope")
        assert excinfo.value.code == "invalid_credentials"

    @pytest.mark.asyncio
    async def test_sign_up_without_session_needs_confirmation(self, client):
        with pytest.raises(AuthError) as excinfo:
            await SupabaseIdentityProvider(client).sign_up("bo@example.com", "secret", "Bo")
        assert excinfo.value.code == "email_not_confirmed"

    @pytest.mark.asyncio
    async def test_uncoded_failure_is_remote_error(self, client):
        with pytest.raises(RemoteServiceError):
            await SupabaseIdentityProvider(client).sign_out()

    @pytest.mark.asyncio
    async def test_resend_verification(self, client):
        await SupabaseIdentityProvider(client).send_verification_email("bo@example.com")
        assert client.auth.resent == [{"type": "signup", "email": "bo@example.com"}]

    def test_subscribe_reports_current_state_and_changes(self, client):
        events = []
        unsubscribe = SupabaseIdentityProvider(client).subscribe(events.append)
        assert events == [None]

        callback = client.auth.callbacks[0]
        callback("SIGNED_IN", SimpleNamespace(user=make_user(), access_token="tok"))
        callback("SIGNED_OUT", None)
        assert events[1].user_id == "u1"
        assert events[2] is None

        unsubscribe()
        assert client.auth.unsubscribed == 1


class TestSupabaseRecordServices:
    """Profile and progress tables."""

    @pytest.mark.asyncio
    async def test_profile_create_get_update(self):
        client = FakeClient()
        users = SupabaseUserRecordService(client)

        await users.create("u1", {"name": "Ada", "preferredTopics": []})
        await users.update("u1", {"learningStyle": "visual"})
        record = await users.get("u1")

        assert record["id"] == "u1"
        assert record["learningStyle"] == "visual"
        assert await users.get("missing") is None

    @pytest.mark.asyncio
    async def test_find_profile_by_email(self):
        client = FakeClient()
        users = SupabaseUserRecordService(client)
        await users.create("g1", {"email": "parent@example.com", "name": "Parent"})

        found = await users.find_by_email(" Parent@example.com")

        assert found["id"] == "g1"
        assert found["name"] == "Parent"
        assert await users.find_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_update_missing_profile_fails(self):
        users = SupabaseUserRecordService(FakeClient())
        with pytest.raises(RemoteServiceError):
            await users.update("missing", {"name": "x"})

    @pytest.mark.asyncio
    async def test_progress_create_if_absent(self):
        client = FakeClient()
        records = SupabaseProgressRecordService(client)

        record, created = await records.create_if_absent("u1", {"totalPoints": 0, "streak": 0})
        assert created
        assert record["totalPoints"] == 0

        await records.save("u1", {"totalPoints": 100, "streak": 2})
        record, created = await records.create_if_absent("u1", {"totalPoints": 0, "streak": 0})

        assert not created
        assert record["totalPoints"] == 100
        assert len(client.tables["learning_progress"].rows) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
