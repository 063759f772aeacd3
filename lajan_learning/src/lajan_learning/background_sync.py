"""
Background Reconciliation

Periodically retries profile writes that failed while the app kept the
optimistic local value, and pushes learning progress.

This runs as a background task and doesn't block the main application.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from lajan_learning.config import Settings, get_settings
from lajan_learning.progress import ProgressStore
from lajan_learning.session_store import SessionStore

logger = logging.getLogger(__name__)


class ReconciliationLoop:
    """
    Background reconciliation of local state with the remote services.

    Pending profile fields are also flushed before every new profile write,
    so this loop only matters when the user stops making changes.
    """

    def __init__(
        self,
        store: SessionStore,
        progress: Optional[ProgressStore] = None,
        settings: Optional[Settings] = None,
        interval_seconds: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        """
        Initialize the reconciliation loop.

        Args:
            store: Session store whose pending changes are flushed
            progress: Progress store to sync (optional)
            settings: Settings (defaults to environment settings)
            interval_seconds: Seconds between runs (default: LAJAN_RECONCILE_INTERVAL_SECONDS)
            enabled: Whether the loop runs (default: LAJAN_RECONCILE_ENABLED)
        """
        settings = settings or get_settings()
        self.store = store
        self.progress = progress
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.reconcile_interval_seconds
        self.enabled = settings.reconcile_enabled if enabled is None else enabled
        self.last_run: Optional[datetime] = None
        self.last_result: Optional[bool] = None
        self.sync_task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self):
        """Start the background task."""
        if not self.enabled:
            logger.info("📚 [Reconciliation] Background reconciliation is disabled")
            return

        if self.running:
            logger.warning("⚠️ [Reconciliation] Already running")
            return

        self.running = True
        logger.info(f"🔄 [Reconciliation] Starting (interval: {self.interval_seconds:.0f}s)")
        self.sync_task = asyncio.create_task(self._sync_loop())

    async def stop(self):
        """Stop the background task."""
        self.running = False
        if self.sync_task:
            self.sync_task.cancel()
            try:
                await self.sync_task
            except asyncio.CancelledError:
                pass
            self.sync_task = None
        logger.info("🛑 [Reconciliation] Stopped")

    async def _sync_loop(self):
        while self.running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"❌ [Reconciliation] Error in reconciliation loop: {e}", exc_info=True)

    async def run_once(self) -> bool:
        """
        Run a single reconciliation pass.

        Returns:
            True when nothing is left pending
        """
        pending = len(self.store.pending_changes)
        profile_ok = await self.store.flush_pending()
        if pending:
            if profile_ok:
                logger.info(f"✅ [Reconciliation] Flushed {pending} pending profile field(s)")
            else:
                logger.warning(f"⚠️ [Reconciliation] {len(self.store.pending_changes)} profile field(s) still pending")

        progress_ok = True
        if self.progress is not None and self.progress.progress is not None:
            user_id = self.progress.progress.user_id
            if not self.progress.is_initialized(user_id):
                # Earlier initialisation failed; retry it before pushing anything
                await self.progress.initialize_progress(user_id, self.store.token)
            if self.progress.is_initialized(user_id):
                progress_ok = await self.progress.sync_with_server()
            else:
                progress_ok = False

        self.last_run = datetime.now()
        self.last_result = profile_ok and progress_ok
        return self.last_result

    def get_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "running": self.running,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_result": self.last_result,
            "interval_seconds": self.interval_seconds,
            "pending_fields": sorted(self.store.pending_changes),
        }
