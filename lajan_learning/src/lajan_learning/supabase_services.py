"""
Supabase-backed collaborators.

The Supabase Python client is synchronous; every call runs in a worker
thread so the event loop stays responsive. Records are kept in camelCase in
the session core and stored as snake_case columns.
"""

import asyncio
import logging
import re
from typing import Any, Dict, Optional, Tuple

from supabase import Client, create_client

from lajan_learning.config import Settings
from lajan_learning.errors import AuthError, RemoteServiceError
from lajan_learning.services import AuthStateCallback, Credential, Unsubscribe

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
PROGRESS_TABLE = "learning_progress"


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.capitalize() for part in rest)


def to_columns(record: Dict[str, Any]) -> Dict[str, Any]:
    return {_snake(key): value for key, value in record.items()}


def from_columns(row: Dict[str, Any]) -> Dict[str, Any]:
    return {_camel(key): value for key, value in row.items()}


def _auth_error(e: Exception) -> Exception:
    code = getattr(e, "code", None)
    message = getattr(e, "message", None) or str(e)
    if code:
        return AuthError(str(code), message)
    return RemoteServiceError(message)


def _credential_from(user: Any, session: Any) -> Optional[Credential]:
    if user is None or session is None or not getattr(session, "access_token", None):
        return None
    metadata = getattr(user, "user_metadata", None) or {}
    return Credential(
        user_id=user.id,
        email=user.email or "",
        token=session.access_token,
        verified=getattr(user, "email_confirmed_at", None) is not None,
        display_name=metadata.get("name", ""),
    )


class SupabaseIdentityProvider:
    """Identity provider on top of Supabase Auth."""

    def __init__(self, client: Client):
        self.supabase = client

    def subscribe(self, on_change: AuthStateCallback) -> Unsubscribe:
        def handle(event: str, session: Any) -> None:
            if event == "SIGNED_OUT" or session is None:
                on_change(None)
            else:
                on_change(_credential_from(getattr(session, "user", None), session))

        subscription = self.supabase.auth.on_auth_state_change(handle)

        try:
            current = self.supabase.auth.get_session()
        except Exception as e:
            logger.warning(f"⚠️ [SupabaseIdentity] Could not read current session: {e}")
            current = None
        on_change(_credential_from(getattr(current, "user", None), current) if current else None)

        def unsubscribe() -> None:
            subscription.unsubscribe()

        return unsubscribe

    async def sign_in(self, email: str, password: str) -> Credential:
        try:
            response = await asyncio.to_thread(
                self.supabase.auth.sign_in_with_password,
                {"email": email, "password": password},
            )
        except Exception as e:
            raise _auth_error(e) from e
        credential = _credential_from(response.user, response.session)
        if credential is None:
            raise AuthError("invalid_credentials", "Sign in returned no session")
        return credential

    async def sign_up(self, email: str, password: str, name: str) -> Credential:
        try:
            response = await asyncio.to_thread(
                self.supabase.auth.sign_up,
                {"email": email, "password": password, "options": {"data": {"name": name}}},
            )
        except Exception as e:
            raise _auth_error(e) from e
        if response.user is None:
            raise RemoteServiceError("Sign up returned no user")
        if response.session is None:
            # Email confirmation enabled: no session until the address is verified
            raise AuthError("email_not_confirmed", "Confirm your email before signing in")
        return _credential_from(response.user, response.session)

    async def sign_out(self) -> None:
        try:
            await asyncio.to_thread(self.supabase.auth.sign_out)
        except Exception as e:
            raise _auth_error(e) from e

    async def send_verification_email(self, email: str) -> None:
        try:
            await asyncio.to_thread(self.supabase.auth.resend, {"type": "signup", "email": email})
        except Exception as e:
            raise _auth_error(e) from e

    async def send_password_reset(self, email: str) -> None:
        try:
            await asyncio.to_thread(self.supabase.auth.reset_password_for_email, email)
        except Exception as e:
            raise _auth_error(e) from e


class SupabaseUserRecordService:
    """User records in the `profiles` table."""

    def __init__(self, client: Client):
        self.supabase = client

    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        result = await asyncio.to_thread(
            lambda: self.supabase.table(PROFILES_TABLE)
            .select("*")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return from_columns(result.data[0])

    async def create(self, user_id: str, fields: Dict[str, Any]) -> None:
        row = to_columns(fields)
        row["id"] = user_id
        await asyncio.to_thread(
            lambda: self.supabase.table(PROFILES_TABLE).upsert(row, on_conflict="id").execute()
        )
        logger.info(f"✅ [SupabaseUsers] Created profile for user {user_id[:20]}...")

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:
        result = await asyncio.to_thread(
            lambda: self.supabase.table(PROFILES_TABLE)
            .update(to_columns(fields))
            .eq("id", user_id)
            .execute()
        )
        if not result.data:
            raise RemoteServiceError(f"Profile not found for user {user_id[:20]}...")

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        result = await asyncio.to_thread(
            lambda: self.supabase.table(PROFILES_TABLE)
            .select("*")
            .eq("email", email.strip().lower())
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return from_columns(result.data[0])


class SupabaseProgressRecordService:
    """Progress records in the `learning_progress` table, one row per user."""

    def __init__(self, client: Client):
        self.supabase = client

    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        result = await asyncio.to_thread(
            lambda: self.supabase.table(PROGRESS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return from_columns(result.data[0])

    async def create_if_absent(
        self, user_id: str, defaults: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], bool]:
        row = to_columns(defaults)
        row["user_id"] = user_id
        # ignore_duplicates turns the upsert into INSERT ... ON CONFLICT DO NOTHING
        inserted = await asyncio.to_thread(
            lambda: self.supabase.table(PROGRESS_TABLE)
            .upsert(row, on_conflict="user_id", ignore_duplicates=True)
            .execute()
        )
        created = bool(inserted.data)
        record = await self.get(user_id)
        if record is None:
            raise RemoteServiceError(f"Progress record missing after create for user {user_id[:20]}...")
        return record, created

    async def save(self, user_id: str, record: Dict[str, Any]) -> None:
        row = to_columns(record)
        row["user_id"] = user_id
        await asyncio.to_thread(
            lambda: self.supabase.table(PROGRESS_TABLE).upsert(row, on_conflict="user_id").execute()
        )


def create_supabase_client(settings: Settings) -> Client:
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY must be set in environment")
    return create_client(settings.supabase_url, settings.supabase_anon_key)
