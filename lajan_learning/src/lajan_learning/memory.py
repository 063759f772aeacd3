"""
In-memory collaborators.

Used when Supabase is not configured (local development, tests) and as the
reference behaviour for the Supabase-backed services.
"""

import asyncio
import copy
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from lajan_learning.errors import AuthError, RemoteServiceError
from lajan_learning.services import AuthStateCallback, Credential, Unsubscribe

logger = logging.getLogger(__name__)


class InMemoryIdentityProvider:
    """
    Identity provider backed by a dict of accounts.

    State changes are delivered synchronously to every subscriber, the way
    most SDKs invoke their auth-state callbacks.
    """

    def __init__(self, require_verification: bool = False):
        self.require_verification = require_verification
        self._accounts: Dict[str, Dict[str, Any]] = {}
        self._subscribers: List[AuthStateCallback] = []
        self.current: Optional[Credential] = None
        self.verification_emails: List[str] = []
        self.password_resets: List[str] = []

    def add_account(
        self,
        email: str,
        password: str,
        user_id: Optional[str] = None,
        name: str = "",
        verified: bool = True,
    ) -> str:
        """Register an account directly (fixtures, seeding)."""
        user_id = user_id or uuid.uuid4().hex
        self._accounts[email.lower()] = {
            "user_id": user_id,
            "password": password,
            "name": name,
            "verified": verified,
        }
        return user_id

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, on_change: AuthStateCallback) -> Unsubscribe:
        self._subscribers.append(on_change)
        # Providers report the current state right after subscribing
        on_change(self.current)

        def unsubscribe() -> None:
            if on_change in self._subscribers:
                self._subscribers.remove(on_change)

        return unsubscribe

    def emit(self, credential: Optional[Credential]) -> None:
        """Publish an auth state change to all subscribers."""
        self.current = credential
        for callback in list(self._subscribers):
            callback(credential)

    async def sign_in(self, email: str, password: str) -> Credential:
        account = self._accounts.get(email.lower())
        if account is None or account["password"] != password:
            raise AuthError("invalid_credentials", "Invalid login credentials")
        if self.require_verification and not account["verified"]:
            raise AuthError("email_not_confirmed", "Email not confirmed")
        credential = Credential(
            user_id=account["user_id"],
            email=email.lower(),
            token=uuid.uuid4().hex,
            verified=account["verified"],
            display_name=account["name"],
        )
        self.emit(credential)
        return credential

    async def sign_up(self, email: str, password: str, name: str) -> Credential:
        if "@" not in email:
            raise AuthError("email_address_invalid", "Invalid email")
        if email.lower() in self._accounts:
            raise AuthError("user_already_exists", "User already registered")
        if len(password) < 6:
            raise AuthError("weak_password", "Password should be at least 6 characters")
        self.add_account(email, password, name=name, verified=not self.require_verification)
        account = self._accounts[email.lower()]
        credential = Credential(
            user_id=account["user_id"],
            email=email.lower(),
            token=uuid.uuid4().hex,
            verified=account["verified"],
            display_name=name,
        )
        self.emit(credential)
        return credential

    async def sign_out(self) -> None:
        self.emit(None)

    async def send_verification_email(self, email: str) -> None:
        self.verification_emails.append(email.lower())

    async def send_password_reset(self, email: str) -> None:
        if email.lower() not in self._accounts:
            raise AuthError("user_not_found", "User not found")
        self.password_resets.append(email.lower())


class InMemoryUserRecordService:
    """User records keyed by user id."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.records: Dict[str, Dict[str, Any]] = {}

    async def _wait(self):
        if self.latency:
            await asyncio.sleep(self.latency)

    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        await self._wait()
        record = self.records.get(user_id)
        return copy.deepcopy(record) if record is not None else None

    async def create(self, user_id: str, fields: Dict[str, Any]) -> None:
        await self._wait()
        self.records[user_id] = copy.deepcopy(fields)

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:
        await self._wait()
        if user_id not in self.records:
            raise RemoteServiceError(f"User record {user_id} not found")
        self.records[user_id].update(copy.deepcopy(fields))

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        await self._wait()
        email = email.strip().lower()
        for user_id, record in self.records.items():
            if (record.get("email") or "").lower() == email:
                return {**copy.deepcopy(record), "id": user_id}
        return None


class InMemoryProgressRecordService:
    """Progress records keyed by user id with set-if-absent creation."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.records: Dict[str, Dict[str, Any]] = {}
        self.creations: Dict[str, int] = {}

    async def _wait(self):
        if self.latency:
            await asyncio.sleep(self.latency)

    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        await self._wait()
        record = self.records.get(user_id)
        return copy.deepcopy(record) if record is not None else None

    async def create_if_absent(
        self, user_id: str, defaults: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], bool]:
        await self._wait()
        # Check and insert happen without yielding to the loop
        if user_id in self.records:
            return copy.deepcopy(self.records[user_id]), False
        self.records[user_id] = copy.deepcopy(defaults)
        self.creations[user_id] = self.creations.get(user_id, 0) + 1
        return copy.deepcopy(defaults), True

    async def save(self, user_id: str, record: Dict[str, Any]) -> None:
        await self._wait()
        self.records[user_id] = copy.deepcopy(record)


class InMemorySnapshotStore:
    """Snapshot store living only for the process lifetime."""

    def __init__(self):
        self.values: Dict[str, Dict[str, Any]] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = self.values.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        self.values[key] = copy.deepcopy(value)

    async def remove(self, key: str) -> None:
        self.values.pop(key, None)


class JsonFileSnapshotStore:
    """
    Durable snapshot store: one JSON file holding a key -> value mapping.

    File access runs in a worker thread so the event loop is never blocked.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️ [SnapshotStore] Unreadable snapshot file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f)
        tmp_path.replace(self.path)

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        data = await asyncio.to_thread(self._read_all)
        return data.get(key)

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            data[key] = value
            await asyncio.to_thread(self._write_all, data)

    async def remove(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            if key in data:
                del data[key]
                await asyncio.to_thread(self._write_all, data)


class HistoryNavigator:
    """Navigator that records the route stack instead of rendering screens."""

    def __init__(self, initial_route: str = "/"):
        self.stack: List[str] = [initial_route]
        self.history: List[Tuple[str, str]] = []

    @property
    def current(self) -> str:
        return self.stack[-1]

    def replace(self, route: str) -> None:
        self.stack[-1] = route
        self.history.append(("replace", route))

    def push(self, route: str) -> None:
        self.stack.append(route)
        self.history.append(("push", route))

    def back(self) -> None:
        if len(self.stack) > 1:
            self.stack.pop()
        self.history.append(("back", self.current))
