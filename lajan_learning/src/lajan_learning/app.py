"""
Application wiring.

Builds the session core against Supabase when it is configured, otherwise
against the in-memory services, and runs the cold-start sequence.
"""

import logging
from typing import Optional

from lajan_learning.age_gate import AgePrompt
from lajan_learning.background_sync import ReconciliationLoop
from lajan_learning.config import Settings, get_settings
from lajan_learning.legacy_bridge import LegacyAuthBridge
from lajan_learning.memory import (
    HistoryNavigator,
    InMemoryIdentityProvider,
    InMemoryProgressRecordService,
    InMemoryUserRecordService,
    JsonFileSnapshotStore,
)
from lajan_learning.onboarding_state import OnboardingFlow, entry_route
from lajan_learning.progress import ProgressStore
from lajan_learning.services import (
    IdentityProvider,
    Navigator,
    ProgressRecordService,
    SnapshotStore,
    UserRecordService,
)
from lajan_learning.session_store import SessionStore

logger = logging.getLogger(__name__)


class LajanApp:
    """Owns one instance of every session-core component."""

    def __init__(
        self,
        identity: IdentityProvider,
        users: UserRecordService,
        progress_records: ProgressRecordService,
        snapshots: SnapshotStore,
        navigator: Optional[Navigator] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.navigator = navigator or HistoryNavigator()
        self.progress = ProgressStore(progress_records, self.settings)
        self.store = SessionStore(identity, users, snapshots, self.settings, progress=self.progress)
        self.bridge = LegacyAuthBridge(self.store, self.navigator, self.progress)
        self.onboarding = OnboardingFlow(self.store, self.navigator, self.progress)
        self.age_prompt = AgePrompt(self.store)
        self.reconciliation = ReconciliationLoop(self.store, self.progress, self.settings)
        self.started = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, navigator: Optional[Navigator] = None) -> "LajanApp":
        settings = settings or get_settings()
        snapshots = JsonFileSnapshotStore(settings.snapshot_path)
        if settings.supabase_url and settings.supabase_anon_key:
            from lajan_learning.supabase_services import (
                SupabaseIdentityProvider,
                SupabaseProgressRecordService,
                SupabaseUserRecordService,
                create_supabase_client,
            )

            client = create_supabase_client(settings)
            logger.info("🗄️ [LajanApp] Using Supabase services")
            return cls(
                SupabaseIdentityProvider(client),
                SupabaseUserRecordService(client),
                SupabaseProgressRecordService(client),
                snapshots,
                navigator,
                settings,
            )

        logger.warning("⚠️ [LajanApp] Supabase not configured, using in-memory services")
        return cls(
            InMemoryIdentityProvider(),
            InMemoryUserRecordService(),
            InMemoryProgressRecordService(),
            snapshots,
            navigator,
            settings,
        )

    async def start(self) -> Optional[str]:
        """
        Cold start: restore the snapshot, then start listening for auth events.

        Returns:
            The entry route, or None while the first auth event is pending
        """
        if self.started:
            return entry_route(self.store.session)
        await self.store.restore()
        self.bridge.mount()
        await self.reconciliation.start()
        self.started = True
        return entry_route(self.store.session)

    async def settle(self) -> None:
        """Wait for in-flight auth events and progress initialisation."""
        if self.store.auth_listener is not None:
            await self.store.auth_listener.settle()
        await self.bridge.settle()

    async def stop(self) -> None:
        await self.reconciliation.stop()
        self.bridge.unmount()
        self.started = False
