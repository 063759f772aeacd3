"""
Legacy auth context bridge.

Older screens read a flat auth context (token, isAuthenticated, userData,
userRole, isVerified). The bridge projects that view from the SessionStore
on every change and keeps no state of its own beyond the subscription.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from lajan_learning.progress import ProgressStore
from lajan_learning.services import Navigator
from lajan_learning.session_state import Session
from lajan_learning.session_store import LogoutResult, SessionStore

logger = logging.getLogger(__name__)

# Signed-out users go to the app root, whose index screen routes on to
# entry_route() (/auth for anonymous users)
LOGIN_ROUTE = "/"


@dataclass(frozen=True)
class AuthContextValue:
    token: Optional[str] = None
    is_authenticated: bool = False
    user_data: Optional[Dict[str, Any]] = None
    user_role: Optional[str] = None
    is_verified: bool = False

    @classmethod
    def from_session(cls, session: Session) -> "AuthContextValue":
        user = session.user
        return cls(
            token=session.token,
            is_authenticated=session.is_authenticated,
            user_data=user.to_record() if user else None,
            user_role=user.role if user else None,
            is_verified=user.verified if user else False,
        )


class LegacyAuthBridge:
    """
    Derived auth context for legacy consumers.

    Redirects to the login route only once the first auth event has been
    handled, so a cold start never bounces a signed-in user.
    """

    def __init__(
        self,
        store: SessionStore,
        navigator: Navigator,
        progress_initializer: Optional[ProgressStore] = None,
    ):
        self.store = store
        self.navigator = navigator
        self.progress_initializer = progress_initializer
        self._value = AuthContextValue()
        self._store_unsubscribe: Optional[Callable[[], None]] = None
        self._listener_unsubscribe: Optional[Callable[[], None]] = None
        self._redirected = False
        self._progress_user_id: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def value(self) -> AuthContextValue:
        return self._value

    @property
    def mounted(self) -> bool:
        return self._store_unsubscribe is not None

    def mount(self) -> "LegacyAuthBridge":
        if self.mounted:
            return self
        self._listener_unsubscribe = self.store.initialize_auth_listener()
        self._store_unsubscribe = self.store.subscribe(self._on_session_change)
        self._on_session_change(self.store.session)
        logger.info("🔗 [LegacyAuthBridge] Mounted")
        return self

    def unmount(self) -> None:
        if self._store_unsubscribe is not None:
            self._store_unsubscribe()
            self._store_unsubscribe = None
        if self._listener_unsubscribe is not None:
            self._listener_unsubscribe()
            self._listener_unsubscribe = None
            logger.info("🔗 [LegacyAuthBridge] Unmounted")

    def login(self, token: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Kept for old call sites only. Does nothing; use SessionStore.login()."""
        logger.warning("⚠️ [LegacyAuthBridge] login() is deprecated and has no effect, use SessionStore.login()")

    async def logout(self) -> LogoutResult:
        return await self.store.logout()

    def _on_session_change(self, session: Session) -> None:
        self._value = AuthContextValue.from_session(session)

        if not session.auto_login_attempted:
            # Still checking: not authenticated does not mean logged out yet
            return

        if not session.is_authenticated:
            # Progress is reset on sign-out, the next sign-in must load it again
            self._progress_user_id = None
            if not self._redirected:
                self._redirected = True
                logger.info("➡️ [LegacyAuthBridge] Not authenticated, redirecting to login")
                self.navigator.replace(LOGIN_ROUTE)
            return

        self._redirected = False
        if session.is_onboarding_complete:
            self._schedule_progress(session)

    def _schedule_progress(self, session: Session) -> None:
        if self.progress_initializer is None:
            return
        user_id = session.user.id
        if user_id == self._progress_user_id:
            return
        self._progress_user_id = user_id
        task = asyncio.get_running_loop().create_task(
            self.progress_initializer.initialize_progress(user_id, session.token)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def settle(self) -> None:
        """Wait for scheduled progress initialisation."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
