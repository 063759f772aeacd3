"""
Auth Listener Adapter

Bridges the identity provider's auth-state stream into the SessionStore.
Only one subscription exists per process; later start() calls reuse it.
"""

import asyncio
import logging
from typing import Callable, Optional, Set

from lajan_learning.services import Credential, IdentityProvider, UserRecordService

logger = logging.getLogger(__name__)

_subscribed = False
_active: Optional["AuthListenerAdapter"] = None


def is_subscribed() -> bool:
    return _subscribed


class AuthListenerAdapter:
    """
    Applies provider events to the store strictly in arrival order.

    Provider callbacks may come from an SDK thread, so they are handed to the
    event loop with call_soon_threadsafe and processed under a lock.
    """

    def __init__(
        self,
        store,
        identity: Optional[IdentityProvider] = None,
        users: Optional[UserRecordService] = None,
    ):
        self.store = store
        self.identity = identity or store.identity
        self.users = users or store.users
        self.events_handled = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._provider_unsubscribe: Optional[Callable[[], None]] = None
        self._handle: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self) -> Callable[[], None]:
        """
        Subscribe to the identity provider. Must be called from the event loop.

        Returns:
            Unsubscribe callable; calling it again is a no-op
        """
        global _subscribed, _active

        if self._handle is not None:
            return self._handle
        if _subscribed and _active is not None:
            logger.warning("⚠️ [AuthListener] Already subscribed, reusing the existing listener")
            return _active._handle

        self._loop = asyncio.get_running_loop()
        _subscribed = True
        _active = self
        self._handle = self._make_unsubscribe()

        try:
            self._provider_unsubscribe = self.identity.subscribe(self._on_auth_state_change)
        except Exception as e:
            logger.error(f"❌ [AuthListener] Failed to subscribe to auth state: {e}", exc_info=True)
            self._handle = None
            _subscribed = False
            _active = None
            self.store.set_error(f"Auth listener failed: {e}")
            self.store.mark_auto_login_attempted()
            return lambda: None

        logger.info("👂 [AuthListener] Subscribed to auth state changes")
        return self._handle

    def _make_unsubscribe(self) -> Callable[[], None]:
        released = False

        def unsubscribe() -> None:
            global _subscribed, _active
            nonlocal released
            if released:
                return
            released = True
            if self._provider_unsubscribe is not None:
                try:
                    self._provider_unsubscribe()
                except Exception as e:
                    logger.warning(f"⚠️ [AuthListener] Provider unsubscribe failed: {e}")
                self._provider_unsubscribe = None
            self._handle = None
            if _active is self:
                _subscribed = False
                _active = None
            logger.info("🛑 [AuthListener] Unsubscribed from auth state changes")

        return unsubscribe

    def _on_auth_state_change(self, credential: Optional[Credential]) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._schedule, credential)

    def _schedule(self, credential: Optional[Credential]) -> None:
        if self._handle is None:
            return
        task = self._loop.create_task(self._handle_event(credential))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_event(self, credential: Optional[Credential]) -> None:
        async with self._lock:
            try:
                if credential is None:
                    logger.info("🔓 [AuthListener] No user, clearing session")
                    await self.store.apply_signed_out()
                else:
                    await self._apply_credential(credential)
            except Exception as e:
                logger.error(f"❌ [AuthListener] Error handling auth state change: {e}", exc_info=True)
                self.store.set_error(f"Auth state update failed: {e}")
            finally:
                self.events_handled += 1
                self.store.mark_auto_login_attempted()

    def _already_applied(self, credential: Credential) -> bool:
        user = self.store.user
        return user is not None and user.id == credential.user_id and self.store.token == credential.token

    async def _apply_credential(self, credential: Credential) -> None:
        if self._already_applied(credential):
            return
        logger.info(f"🔐 [AuthListener] User signed in: {credential.user_id[:20]}...")
        user, profile_error = await self.store.fetch_profile(credential)
        # sign_in()/register() may have applied the same credential meanwhile
        if self._already_applied(credential):
            return
        current = self.store.user
        if profile_error and current is not None and current.id == credential.user_id:
            # Token refresh for the signed-in user: keep the profile, swap the token
            user = current
        await self.store.login(credential.token, user)
        if profile_error:
            self.store.set_error(profile_error)

    async def settle(self) -> None:
        """Wait until every delivered event has been handled."""
        await asyncio.sleep(0)
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
            await asyncio.sleep(0)
