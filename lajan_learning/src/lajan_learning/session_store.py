"""
Session Store

Single owner of the process-wide Session. Every change goes through the
methods below; readers get immutable snapshots through `session` or
`subscribe()`.

Profile mutators are local-first: the change is applied to the in-memory user
immediately and then written to the user-record service. A failed write keeps
the local value, sets `error` and queues the field for `flush_pending()`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from lajan_learning.config import Settings, get_settings
from lajan_learning.errors import (
    AuthError,
    InvalidInputError,
    LajanError,
    NotAuthenticatedError,
    NotFoundError,
    auth_message,
)
from lajan_learning.models import (
    KNOWLEDGE_LEVELS,
    MAX_AGE,
    MIN_AGE,
    MINOR_AGE_LIMIT,
    LearningStyle,
    User,
    normalize_topics,
    parse_learning_style,
)
from lajan_learning.progress import ProgressStore
from lajan_learning.services import (
    Credential,
    IdentityProvider,
    SnapshotStore,
    UserRecordService,
    call_remote,
)
from lajan_learning.session_state import Session

logger = logging.getLogger(__name__)

SessionListener = Callable[[Session], None]

# Profile fields a user may edit after onboarding
EDITABLE_FIELDS = ("name", "bio", "learning_style", "preferred_topics", "knowledge_level", "is_minor")

# Local attribute -> remote record key
REMOTE_KEYS = {
    "name": "name",
    "bio": "bio",
    "learning_style": "learningStyle",
    "preferred_topics": "preferredTopics",
    "knowledge_level": "knowledgeLevel",
    "is_minor": "isMinor",
    "age": "age",
    "points": "points",
    "streak": "streak",
    "guardian_email": "guardianEmail",
    "guardian_connected": "guardianConnected",
}

ONBOARDING_KEYS = ("learningStyle", "preferredTopics", "knowledgeLevel")


@dataclass(frozen=True)
class LogoutResult:
    """Outcome of SessionStore.logout()."""
    success: bool
    error: Optional[str] = None


class SessionStore:
    """
    Owns the Session and its durable snapshot.

    Collaborators are injected so the same store runs against Supabase in
    production and in-memory services in development and tests.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        users: UserRecordService,
        snapshots: SnapshotStore,
        settings: Optional[Settings] = None,
        progress: Optional[ProgressStore] = None,
    ):
        """
        Initialize SessionStore.

        Args:
            identity: Identity provider
            users: Remote user-record service
            snapshots: Durable local snapshot store
            settings: Settings (defaults to environment settings)
            progress: Progress store synced and reset on logout (optional)
        """
        self.identity = identity
        self.users = users
        self.snapshots = snapshots
        self.settings = settings or get_settings()
        self.progress = progress

        self._user: Optional[User] = None
        self._token: Optional[str] = None
        self._auto_login_attempted = False
        self._age_prompt_dismissed = False
        self._error: Optional[str] = None
        self._loading = False
        self._pending: Dict[str, Any] = {}
        self._pending_user_id: Optional[str] = None
        self._listeners: List[SessionListener] = []
        self._session = Session()
        self._auth_listener = None

    # ==================== Reading ====================

    @property
    def session(self) -> Session:
        return self._session

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def pending_changes(self) -> Dict[str, Any]:
        return dict(self._pending)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """
        Register a change listener.

        Returns:
            Callable that removes the listener; safe to call more than once
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        self._session = Session.build(
            user=self._user,
            token=self._token,
            auto_login_attempted=self._auto_login_attempted,
            age_prompt_dismissed=self._age_prompt_dismissed,
            error=self._error,
            is_loading=self._loading,
        )
        for listener in list(self._listeners):
            try:
                listener(self._session)
            except Exception as e:
                logger.error(f"❌ [SessionStore] Session listener failed: {e}", exc_info=True)

    def set_error(self, message: Optional[str]) -> None:
        self._error = message
        self._publish()

    def clear_error(self) -> None:
        if self._error is not None:
            self.set_error(None)

    # ==================== Session lifecycle ====================

    async def login(self, token: str, user: User) -> None:
        """
        Mark the session authenticated and persist the snapshot.

        A snapshot write failure is logged and does not undo the login.
        """
        if not token or user is None or not user.id:
            raise InvalidInputError("login requires a token and a user")

        if self._user is not None and self._user.id != user.id:
            self._reset_session_scoped_state()
        else:
            user = self._carry_forward(user)

        self._user = user
        self._token = token
        self._auto_login_attempted = True
        self._error = None
        self._publish()
        await self._write_snapshot()
        logger.info(f"✅ [SessionStore] Logged in user {user.id[:20]}...")

    def _carry_forward(self, user: User) -> User:
        """
        Merge what this session already knows about the same user into a
        freshly loaded profile.

        Pending writes win over the incoming record and onboarding fields
        are never unset by a token refresh or a repeated sign-in.
        """
        current = self._user
        if current is None or current.id != user.id:
            return user
        record = user.to_record()
        known = current.to_record()
        for key in ONBOARDING_KEYS:
            if not record.get(key) and known.get(key):
                record[key] = known[key]
        if self._pending_user_id == user.id:
            record.update(self._pending)
        return User.from_record(user.id, record, email=user.email, name=user.name, verified=user.verified)

    async def logout(self) -> LogoutResult:
        """
        Sign out and clear local state and the snapshot.

        Calling it while already logged out is a no-op.
        """
        if not self._session.is_authenticated and self._user is None:
            return LogoutResult(success=True)

        error = None
        if self.progress is not None:
            synced = await self.progress.sync_with_server()
            if synced:
                logger.info("📊 [SessionStore] Progress synced before logout")

        try:
            await call_remote(self.identity.sign_out, self.settings.remote_timeout_seconds, "Sign out")
        except LajanError as e:
            logger.error(f"❌ [SessionStore] Logout error: {e}")
            error = auth_message(getattr(e, "code", None), "sign_out")

        await self._clear_local_session(error)
        if error is None:
            logger.info("✅ [SessionStore] Successfully logged out")
        return LogoutResult(success=error is None, error=error)

    async def sign_in(self, email: str, password: str) -> User:
        """
        Sign in with email and password.

        Raises:
            InvalidInputError: email or password missing
            AuthError: provider rejected the credentials (message is user-facing)
        """
        if not email or not password:
            raise InvalidInputError("Email and password are required")

        self._loading = True
        self._publish()
        try:
            credential = await call_remote(
                lambda: self.identity.sign_in(email.strip(), password),
                self.settings.remote_timeout_seconds,
                "Sign in",
            )
        except AuthError as e:
            message = auth_message(e.code, "sign_in")
            logger.warning(f"⚠️ [SessionStore] Sign in rejected ({e.code}): {e}")
            self._finish_with_error(message)
            raise AuthError(e.code, message) from e
        except LajanError as e:
            logger.error(f"❌ [SessionStore] Sign in failed: {e}")
            self._finish_with_error(str(e))
            raise

        user, profile_error = await self.fetch_profile(credential)
        if profile_error and self._user is not None and self._user.id == user.id:
            # Keep the loaded profile, only the token changes
            user = self._user
        self._loading = False
        await self.login(credential.token, user)
        if profile_error:
            self.set_error(profile_error)
        return user

    async def register(self, email: str, password: str, name: str) -> User:
        """
        Create an account, its user record and sign the user in.

        The user record and verification email are best effort; failures are
        recorded on `error` without aborting the registration.
        """
        if not email or not password or not name or not name.strip():
            raise InvalidInputError("Name, email and password are required")

        self._loading = True
        self._publish()
        try:
            credential = await call_remote(
                lambda: self.identity.sign_up(email.strip(), password, name.strip()),
                self.settings.remote_timeout_seconds,
                "Registration",
            )
        except AuthError as e:
            message = auth_message(e.code, "sign_up")
            self._finish_with_error(message)
            raise AuthError(e.code, message) from e
        except LajanError as e:
            logger.error(f"❌ [SessionStore] Registration failed: {e}")
            self._finish_with_error(str(e))
            raise

        fields = {
            "email": credential.email,
            "name": name.strip(),
            "role": "user",
            "points": 0,
            "verified": credential.verified,
            "preferredTopics": [],
            "createdAt": datetime.now().isoformat(),
        }
        record_error = None
        try:
            await call_remote(
                lambda: self.users.create(credential.user_id, fields),
                self.settings.remote_timeout_seconds,
                "Create user record",
            )
        except LajanError as e:
            logger.error(f"❌ [SessionStore] Failed to create user record: {e}")
            record_error = str(e)

        if not credential.verified:
            try:
                await call_remote(
                    lambda: self.identity.send_verification_email(credential.email),
                    self.settings.remote_timeout_seconds,
                    "Send verification email",
                )
            except LajanError as e:
                logger.warning(f"⚠️ [SessionStore] Verification email not sent: {e}")

        user = User.from_record(
            credential.user_id,
            fields,
            email=credential.email,
            name=name.strip(),
            verified=credential.verified,
        )
        self._loading = False
        await self.login(credential.token, user)
        if record_error:
            self.set_error(record_error)
        return user

    async def reset_password(self, email: str) -> None:
        """Send a password reset email."""
        if not email or not email.strip():
            raise InvalidInputError("Email is required")
        await self._identity_passthrough(
            lambda: self.identity.send_password_reset(email.strip()), "reset_password"
        )

    async def resend_verification(self, email: str) -> None:
        """Send the verification email again."""
        if not email or not email.strip():
            raise InvalidInputError("Email is required")
        await self._identity_passthrough(
            lambda: self.identity.send_verification_email(email.strip()), "resend_verification"
        )

    async def _identity_passthrough(self, operation, kind: str) -> None:
        try:
            await call_remote(operation, self.settings.remote_timeout_seconds, kind.replace("_", " "))
        except AuthError as e:
            message = auth_message(e.code, kind)
            self.set_error(message)
            raise AuthError(e.code, message) from e
        except LajanError as e:
            message = auth_message(None, kind)
            logger.error(f"❌ [SessionStore] {message}: {e}")
            self.set_error(message)
            raise

    def _finish_with_error(self, message: str) -> None:
        self._loading = False
        self._error = message
        self._auto_login_attempted = True
        self._publish()

    async def fetch_profile(self, credential: Credential) -> Tuple[User, Optional[str]]:
        """
        Load the extended profile for a provider credential.

        Returns:
            (user, error). On failure the user carries only provider fields
            and error describes what went wrong.
        """
        try:
            record = await call_remote(
                lambda: self.users.get(credential.user_id),
                self.settings.remote_timeout_seconds,
                "Profile fetch",
            )
        except LajanError as e:
            logger.warning(f"⚠️ [SessionStore] Using degraded profile for {credential.user_id[:20]}...: {e}")
            degraded = User.from_record(
                credential.user_id,
                None,
                email=credential.email,
                name=credential.display_name,
                verified=credential.verified,
            )
            return degraded, str(e)

        user = User.from_record(
            credential.user_id,
            record,
            email=credential.email,
            name=credential.display_name,
            verified=credential.verified,
        )
        return user, None

    async def restore(self) -> bool:
        """
        Restore the session from the durable snapshot (cold start).

        Does not count as an auth event: auto_login_attempted stays as is.

        Returns:
            True if a snapshot was applied
        """
        if self._session.is_authenticated:
            return False
        try:
            snapshot = await self.snapshots.get(self.settings.snapshot_key)
        except Exception as e:
            logger.warning(f"⚠️ [SessionStore] Could not read session snapshot: {e}")
            return False
        if not snapshot:
            return False

        record = snapshot.get("user") if isinstance(snapshot, dict) else None
        token = snapshot.get("token") if isinstance(snapshot, dict) else None
        if not isinstance(record, dict) or not record.get("id") or not isinstance(token, str) or not token:
            logger.warning("⚠️ [SessionStore] Discarding malformed session snapshot")
            await self._remove_snapshot()
            return False

        self._user = User.from_record(
            record["id"],
            record,
            email=record.get("email") or "",
            name=record.get("name") or "",
            verified=bool(record.get("verified", False)),
        )
        self._token = token
        self._publish()
        logger.info(f"💾 [SessionStore] Restored session for user {record['id'][:20]}...")
        return True

    def initialize_auth_listener(self) -> Callable[[], None]:
        """
        Subscribe to the identity provider once.

        Returns:
            Unsubscribe callable (idempotent)
        """
        from lajan_learning.auth_listener import AuthListenerAdapter

        if self._auth_listener is None:
            self._auth_listener = AuthListenerAdapter(self)
        return self._auth_listener.start()

    @property
    def auth_listener(self):
        return self._auth_listener

    def mark_auto_login_attempted(self) -> None:
        """One-way latch; never reset for the lifetime of the store."""
        if not self._auto_login_attempted:
            self._auto_login_attempted = True
            self._publish()

    async def apply_signed_out(self) -> None:
        """Provider reported no user: clear local session state."""
        await self._clear_local_session(None)

    async def _clear_local_session(self, error: Optional[str]) -> None:
        had_user = self._user is not None
        self._user = None
        self._token = None
        self._auto_login_attempted = True
        self._error = error
        self._loading = False
        self._reset_session_scoped_state()
        if self.progress is not None and had_user:
            self.progress.reset_progress()
        self._publish()
        await self._remove_snapshot()

    def _reset_session_scoped_state(self) -> None:
        self._pending.clear()
        self._pending_user_id = None
        self._age_prompt_dismissed = False

    # ==================== Profile mutators ====================

    async def set_learning_style(self, style: Any) -> bool:
        """Set the learning style (first onboarding step)."""
        parsed = parse_learning_style(style)
        if parsed is None:
            raise InvalidInputError(f"Learning style must be one of: {', '.join(s.value for s in LearningStyle)}")
        self._require_user()
        return await self._apply({"learning_style": parsed}, "set learning style")

    async def set_preferred_topics(self, topics: Iterable[str]) -> bool:
        """Set preferred topics (second onboarding step)."""
        cleaned = normalize_topics(topics)
        if not cleaned:
            raise InvalidInputError("Select at least one topic")
        user = self._require_user()
        if user.learning_style is None:
            raise InvalidInputError("Choose a learning style before selecting topics")
        return await self._apply({"preferred_topics": cleaned}, "set preferred topics")

    async def set_knowledge_level(self, level: Any) -> bool:
        """Set the knowledge level (last onboarding step)."""
        if isinstance(level, bool) or level not in KNOWLEDGE_LEVELS:
            raise InvalidInputError(f"Knowledge level must be one of {KNOWLEDGE_LEVELS}")
        user = self._require_user()
        if not user.preferred_topics:
            raise InvalidInputError("Select topics before the knowledge assessment")
        return await self._apply({"knowledge_level": level}, "set knowledge level")

    async def update_user_age(self, age: Any) -> bool:
        """Set the age; derives is_minor."""
        if isinstance(age, bool) or not isinstance(age, int) or not MIN_AGE <= age <= MAX_AGE:
            raise InvalidInputError(f"Please enter a valid age between {MIN_AGE} and {MAX_AGE}")
        self._require_user()
        return await self._apply({"age": age, "is_minor": age < MINOR_AGE_LIMIT}, "update age")

    async def update_user(self, fields: Dict[str, Any]) -> bool:
        """
        Edit profile fields after onboarding.

        Only EDITABLE_FIELDS are applied. Onboarding fields can be changed but
        never cleared, and are not set here for the first time.
        """
        user = self._require_user()
        changes: Dict[str, Any] = {}
        for key, value in fields.items():
            if key not in EDITABLE_FIELDS:
                logger.warning(f"⚠️ [SessionStore] Ignoring non-editable field: {key}")
                continue
            if key == "learning_style":
                value = parse_learning_style(value)
            elif key == "preferred_topics":
                value = normalize_topics(value)
            elif key == "knowledge_level" and (isinstance(value, bool) or value not in KNOWLEDGE_LEVELS):
                value = None
            elif key == "is_minor" and not isinstance(value, bool):
                continue

            if key in ("learning_style", "preferred_topics", "knowledge_level"):
                current = getattr(user, key)
                if not current:
                    logger.warning(f"⚠️ [SessionStore] {key} is set through onboarding, not update_user")
                    continue
                if not value:
                    logger.warning(f"⚠️ [SessionStore] Refusing to clear onboarding field {key}")
                    continue
            changes[key] = value

        if not changes:
            return True
        return await self._apply(changes, "update user profile")

    async def complete_module(self, topic_id: str, module_id: str, score: float = 1.0) -> int:
        """
        Complete a module and credit the earned points to the user record.

        Returns:
            Points earned (0 for a repeated completion)
        """
        user = self._require_user()
        if self.progress is None:
            raise LajanError("Progress tracking is not configured")

        points = await self.progress.complete_module(user.id, topic_id, module_id, score)
        if points <= 0:
            return 0
        current = self._require_user()
        await self._apply(
            {"points": current.points + points, "streak": self.progress.progress.streak},
            "update points",
        )
        return points

    async def connect_guardian(self, guardian_email: str) -> None:
        """
        Ask a registered user to act as guardian.

        The link stays unconfirmed (guardian_connected False) until the
        guardian accepts it.

        Raises:
            InvalidInputError: email missing, malformed or the user's own
            NotFoundError: no account uses that email
            RemoteServiceError: lookup or update failed
        """
        email = (guardian_email or "").strip().lower()
        if not email or "@" not in email:
            raise InvalidInputError("Please enter your guardian's email address")
        user = self._require_user()
        if email == user.email.lower():
            raise InvalidInputError("You cannot be your own guardian")

        self._loading = True
        self._error = None
        self._publish()
        try:
            guardian = await call_remote(
                lambda: self.users.find_by_email(email),
                self.settings.remote_timeout_seconds,
                "Guardian lookup",
            )
            if guardian is None:
                raise NotFoundError("No user found with this email")
            await call_remote(
                lambda: self.users.update(user.id, {
                    "guardianEmail": email,
                    "guardianConnected": False,
                    "updatedAt": datetime.now().isoformat(),
                }),
                self.settings.remote_timeout_seconds,
                "Connect guardian",
            )
        except LajanError as e:
            logger.error(f"❌ [SessionStore] Error connecting guardian: {e}")
            self._loading = False
            self._error = str(e)
            self._publish()
            raise

        self._loading = False
        if self._user is not None and self._user.id == user.id:
            self._user = self._user.with_changes(guardian_email=email, guardian_connected=False)
        self._publish()
        await self._write_snapshot()
        logger.info(f"👪 [SessionStore] Guardian request sent for user {user.id[:20]}...")

    def dismiss_age_prompt(self) -> None:
        """Hide the age prompt for the rest of this session only."""
        self._age_prompt_dismissed = True
        self._publish()

    def _require_user(self) -> User:
        if self._user is None or not self._token:
            raise NotAuthenticatedError()
        return self._user

    async def _apply(self, changes: Dict[str, Any], description: str) -> bool:
        # Applied to the user as it is now, not as it was when the caller started
        user = self._require_user()
        self._user = user.with_changes(**changes)
        self._error = None
        self._publish()
        await self._write_snapshot()

        remote = {REMOTE_KEYS[key]: _to_remote(value) for key, value in changes.items()}
        return await self._push(user.id, remote, description)

    async def _push(self, user_id: str, remote: Dict[str, Any], description: str) -> bool:
        if self._pending_user_id not in (None, user_id):
            self._pending.clear()
        payload = dict(self._pending)
        payload.update(remote)
        payload["updatedAt"] = datetime.now().isoformat()

        try:
            await call_remote(
                lambda: self.users.update(user_id, payload),
                self.settings.remote_timeout_seconds,
                description.capitalize(),
            )
        except LajanError as e:
            logger.error(f"❌ [SessionStore] Failed to {description}: {e}")
            if self._user is not None and self._user.id == user_id:
                self._pending.update(remote)
                self._pending_user_id = user_id
                self._error = f"Failed to {description}"
                self._publish()
            return False

        for key, value in payload.items():
            if key in self._pending and self._pending[key] == value:
                del self._pending[key]
        logger.info(f"✅ [SessionStore] {description.capitalize()} saved for user {user_id[:20]}...")
        return True

    async def flush_pending(self) -> bool:
        """
        Retry profile writes that failed earlier.

        Returns:
            True when nothing is left pending
        """
        if not self._pending:
            return True
        if self._user is None or self._user.id != self._pending_user_id:
            self._pending.clear()
            return True

        pending_error = self._error
        ok = await self._push(self._user.id, {}, "sync pending profile changes")
        if ok and not self._pending and pending_error and pending_error.startswith("Failed to "):
            self._error = None
            self._publish()
        return ok and not self._pending

    # ==================== Snapshot ====================

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "user": self._user.to_record() if self._user else None,
            "token": self._token,
            "isAuthenticated": self._session.is_authenticated,
            "isOnboardingComplete": self._session.is_onboarding_complete,
        }

    async def _write_snapshot(self) -> None:
        try:
            await self.snapshots.set(self.settings.snapshot_key, self._snapshot())
        except Exception as e:
            logger.warning(f"⚠️ [SessionStore] Failed to persist session snapshot: {e}")

    async def _remove_snapshot(self) -> None:
        try:
            await self.snapshots.remove(self.settings.snapshot_key)
        except Exception as e:
            logger.warning(f"⚠️ [SessionStore] Failed to clear session snapshot: {e}")


def _to_remote(value: Any) -> Any:
    if isinstance(value, LearningStyle):
        return value.value
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return value
