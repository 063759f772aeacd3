"""
External collaborator interfaces.

The session core only talks to the identity provider, the record services,
the snapshot store and the navigator through these protocols.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, TypeVar

from lajan_learning.errors import LajanError, RemoteServiceError, RemoteTimeoutError

T = TypeVar("T")


@dataclass(frozen=True)
class Credential:
    """Identity returned by the provider after sign-in or on a state change."""
    user_id: str
    email: str
    token: str
    verified: bool = False
    display_name: str = ""


AuthStateCallback = Callable[[Optional[Credential]], None]
Unsubscribe = Callable[[], None]


class IdentityProvider(Protocol):
    def subscribe(self, on_change: AuthStateCallback) -> Unsubscribe: ...

    async def sign_in(self, email: str, password: str) -> Credential: ...

    async def sign_up(self, email: str, password: str, name: str) -> Credential: ...

    async def sign_out(self) -> None: ...

    async def send_verification_email(self, email: str) -> None: ...

    async def send_password_reset(self, email: str) -> None: ...


class UserRecordService(Protocol):
    async def get(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    async def create(self, user_id: str, fields: Dict[str, Any]) -> None: ...

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None: ...

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]: ...


class ProgressRecordService(Protocol):
    async def get(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    async def create_if_absent(
        self, user_id: str, defaults: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], bool]: ...

    async def save(self, user_id: str, record: Dict[str, Any]) -> None: ...


class SnapshotStore(Protocol):
    async def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    async def set(self, key: str, value: Dict[str, Any]) -> None: ...

    async def remove(self, key: str) -> None: ...


class Navigator(Protocol):
    def replace(self, route: str) -> None: ...

    def push(self, route: str) -> None: ...

    def back(self) -> None: ...


async def call_remote(
    operation: Callable[[], Awaitable[T]],
    timeout: float,
    description: str,
) -> T:
    """
    Run a remote operation with a bounded timeout.

    Timeouts become RemoteTimeoutError and unexpected failures become
    RemoteServiceError; session core errors pass through unchanged.

    Args:
        operation: Zero-argument coroutine factory
        timeout: Seconds before giving up
        description: Used in error messages

    Returns:
        Whatever the operation returns
    """
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise RemoteTimeoutError(f"{description} timed out after {timeout:.0f}s") from e
    except LajanError:
        raise
    except Exception as e:
        raise RemoteServiceError(f"{description} failed: {e}") from e
