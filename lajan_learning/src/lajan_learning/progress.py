"""
Learning Progress

Per-user progress record and the store that initialises, loads and updates it.
Initialisation is set-if-absent: re-initialising never resets counters.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional, Set

from lajan_learning.config import Settings, get_settings
from lajan_learning.errors import LajanError
from lajan_learning.services import ProgressRecordService, call_remote

logger = logging.getLogger(__name__)

POINTS_PER_MODULE = 50
CORRECT_SCORE_THRESHOLD = 0.7


@dataclass
class TopicProgress:
    """Progress within a single topic."""
    completed: bool = False
    completed_modules: Set[str] = field(default_factory=set)
    module_attempts: Dict[str, str] = field(default_factory=dict)
    score: float = 0.0
    questions_answered: int = 0
    correct_answers: int = 0
    last_attempt: Optional[str] = None


@dataclass
class Progress:
    """Learning progress for one user."""
    user_id: str
    total_points: int = 0
    streak: int = 0
    last_completed_date: Optional[str] = None
    topics_progress: Dict[str, TopicProgress] = field(default_factory=dict)

    @classmethod
    def empty(cls, user_id: str) -> "Progress":
        return cls(user_id=user_id)

    def to_record(self) -> Dict[str, Any]:
        """Convert to the remote record shape."""
        return {
            "userId": self.user_id,
            "totalPoints": self.total_points,
            "streak": self.streak,
            "lastCompletedDate": self.last_completed_date,
            "topicsProgress": {
                topic_id: {
                    "completed": topic.completed,
                    "completedModules": sorted(topic.completed_modules),
                    "score": topic.score,
                    "questionsAnswered": topic.questions_answered,
                    "correctAnswers": topic.correct_answers,
                    "lastAttempt": topic.last_attempt,
                    "modules": {
                        module_id: {"completed": True, "lastAttempt": topic.module_attempts.get(module_id)}
                        for module_id in sorted(topic.completed_modules)
                    },
                }
                for topic_id, topic in self.topics_progress.items()
            },
        }

    @classmethod
    def from_record(cls, user_id: str, data: Optional[Dict[str, Any]]) -> "Progress":
        """Build from a remote record; negative or missing counters become 0."""
        data = data or {}
        topics: Dict[str, TopicProgress] = {}
        raw_topics = data.get("topicsProgress") or {}
        if isinstance(raw_topics, dict):
            for topic_id, raw in raw_topics.items():
                if not isinstance(raw, dict):
                    continue
                modules = set(raw.get("completedModules") or [])
                attempts: Dict[str, str] = {}
                # Per-module map; older records have only this, without the list
                for module_id, module in (raw.get("modules") or {}).items():
                    if isinstance(module, dict) and module.get("completed"):
                        modules.add(module_id)
                        if isinstance(module.get("lastAttempt"), str):
                            attempts[module_id] = module["lastAttempt"]
                topics[topic_id] = TopicProgress(
                    completed=bool(raw.get("completed", False)),
                    completed_modules=modules,
                    module_attempts=attempts,
                    score=float(raw.get("score") or 0.0),
                    questions_answered=_non_negative(raw.get("questionsAnswered")),
                    correct_answers=_non_negative(raw.get("correctAnswers")),
                    last_attempt=raw.get("lastAttempt"),
                )
        return cls(
            user_id=data.get("userId") or user_id,
            total_points=_non_negative(data.get("totalPoints")),
            streak=_non_negative(data.get("streak")),
            last_completed_date=data.get("lastCompletedDate"),
            topics_progress=topics,
        )


def _non_negative(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


class ProgressStore:
    """
    Owns the local progress record of the signed-in user.

    initialize_progress() may be called from several places at once (the
    knowledge-assessment step and the auth bridge); a per-user lock around the
    existence check guarantees at most one creation.
    """

    def __init__(self, records: ProgressRecordService, settings: Optional[Settings] = None):
        """
        Initialize ProgressStore.

        Args:
            records: Remote progress-record service
            settings: Settings (defaults to environment settings)
        """
        self.records = records
        self.settings = settings or get_settings()
        self.progress: Optional[Progress] = None
        self.error: Optional[str] = None
        self.is_syncing = False
        self._locks: Dict[str, asyncio.Lock] = {}
        self._initialized: Set[str] = set()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        if user_id not in self._locks:
            self._locks[user_id] = asyncio.Lock()
        return self._locks[user_id]

    async def initialize_progress(self, user_id: str, token: Optional[str] = None) -> Optional[Progress]:
        """
        Create or load the progress record for a user.

        Args:
            user_id: User id
            token: Session token; without one the record is only created locally

        Returns:
            The loaded or newly created Progress, None if user_id is empty
        """
        if not user_id:
            logger.warning("⚠️ [ProgressStore] initialize_progress called without a user id")
            return None

        async with self._lock_for(user_id):
            if user_id in self._initialized and self.progress and self.progress.user_id == user_id:
                return self.progress

            if not token:
                logger.info(f"📊 [ProgressStore] No token for user {user_id[:20]}..., initializing locally")
                self.progress = Progress.empty(user_id)
                return self.progress

            defaults = Progress.empty(user_id).to_record()
            try:
                record, created = await call_remote(
                    lambda: self.records.create_if_absent(user_id, defaults),
                    self.settings.remote_timeout_seconds,
                    "Progress initialization",
                )
            except LajanError as e:
                logger.error(f"❌ [ProgressStore] Failed to initialize progress: {e}")
                self.error = str(e)
                if self.progress is None or self.progress.user_id != user_id:
                    self.progress = Progress.empty(user_id)
                return self.progress

            self.progress = Progress.from_record(user_id, record)
            self._initialized.add(user_id)
            self.error = None
            if created:
                logger.info(f"✅ [ProgressStore] Created progress record for user {user_id[:20]}...")
            else:
                logger.info(f"✅ [ProgressStore] Loaded progress for user {user_id[:20]}... (points: {self.progress.total_points})")
            return self.progress

    def is_initialized(self, user_id: str) -> bool:
        return user_id in self._initialized

    async def complete_module(
        self,
        user_id: str,
        topic_id: str,
        module_id: str,
        score: float = 1.0,
        today: Optional[date] = None,
    ) -> int:
        """
        Mark a module completed.

        Repeating a completion updates the score but awards no extra points.

        Args:
            user_id: User id, must match the loaded record
            topic_id: Topic id
            module_id: Module id within the topic
            score: Score between 0 and 1
            today: Date used for the streak (defaults to today)

        Returns:
            Points earned by this call
        """
        if self.progress is None:
            self.error = "Progress not initialized"
            logger.error(f"❌ [ProgressStore] Cannot complete module {module_id}: {self.error}")
            return 0
        if self.progress.user_id != user_id:
            self.error = "User ID mismatch when completing module"
            logger.error(f"❌ [ProgressStore] {self.error}")
            return 0

        now = datetime.now()
        if today is not None:
            now = datetime.combine(today, now.time())
        now = now.isoformat()
        topic = self.progress.topics_progress.setdefault(topic_id, TopicProgress())
        is_new = module_id not in topic.completed_modules
        points = POINTS_PER_MODULE if is_new else 0

        topic.completed_modules.add(module_id)
        topic.module_attempts[module_id] = now
        topic.completed = True
        topic.score = max(topic.score, score)
        topic.questions_answered += 1
        if score > CORRECT_SCORE_THRESHOLD:
            topic.correct_answers += 1
        topic.last_attempt = now

        self.progress.total_points += points
        self.update_streak(today)
        self.progress.last_completed_date = (today or date.today()).isoformat()

        await self.sync_with_server()
        logger.info(f"✅ [ProgressStore] Module {module_id} in {topic_id} completed (+{points} points)")
        return points

    def is_module_completed(self, topic_id: str, module_id: str) -> bool:
        if self.progress is None:
            return False
        topic = self.progress.topics_progress.get(topic_id)
        return topic is not None and module_id in topic.completed_modules

    def was_module_completed_today(self, topic_id: str, module_id: str, today: Optional[date] = None) -> bool:
        if not self.is_module_completed(topic_id, module_id):
            return False
        attempt = self.progress.topics_progress[topic_id].module_attempts.get(module_id)
        if not attempt:
            return False
        return attempt[:10] == (today or date.today()).isoformat()

    def are_all_modules_completed_today(
        self, topic_id: str, module_ids: Iterable[str], today: Optional[date] = None
    ) -> bool:
        """True when every listed module was completed today; False for an empty list."""
        module_ids = list(module_ids)
        if not module_ids:
            return False
        return all(self.was_module_completed_today(topic_id, m, today) for m in module_ids)

    async def fetch_progress_from_server(self, user_id: str) -> Optional[Progress]:
        """
        Reload the record from the server, replacing the local copy.

        Creates a zeroed record when the server has none.

        Returns:
            The server's Progress, None if the fetch failed
        """
        if not user_id:
            return None
        async with self._lock_for(user_id):
            try:
                record = await call_remote(
                    lambda: self.records.get(user_id),
                    self.settings.remote_timeout_seconds,
                    "Progress fetch",
                )
                if record is None:
                    record, _ = await call_remote(
                        lambda: self.records.create_if_absent(user_id, Progress.empty(user_id).to_record()),
                        self.settings.remote_timeout_seconds,
                        "Progress initialization",
                    )
            except LajanError as e:
                logger.error(f"❌ [ProgressStore] Error fetching progress: {e}")
                self.error = str(e)
                return None

            self.progress = Progress.from_record(user_id, record)
            self._initialized.add(user_id)
            self.error = None
            logger.info(f"📥 [ProgressStore] Progress fetched for user {user_id[:20]}... (points: {self.progress.total_points})")
            return self.progress

    def update_streak(self, today: Optional[date] = None) -> int:
        """
        Update the streak against the last completion date.

        Consecutive day increments, a gap resets to 1, the same day keeps at least 1.
        """
        if self.progress is None:
            return 0
        today = today or date.today()
        last = self.progress.last_completed_date
        streak = self.progress.streak
        if not last:
            streak = max(1, streak)
        else:
            try:
                last_day = date.fromisoformat(last[:10])
            except ValueError:
                last_day = None
            if last_day is None:
                streak = 1
            else:
                diff = (today - last_day).days
                if diff == 1:
                    streak += 1
                elif diff > 1:
                    streak = 1
                else:
                    streak = max(1, streak)
        self.progress.streak = streak
        return streak

    async def sync_with_server(self) -> bool:
        """Push the local record. Skipped while another sync is running."""
        if self.progress is None or self.is_syncing:
            return False
        if self.progress.user_id not in self._initialized:
            # A local-only record must never overwrite the remote one
            logger.warning("⚠️ [ProgressStore] Progress not loaded from server yet, skipping sync")
            return False
        self.is_syncing = True
        progress = self.progress
        try:
            await call_remote(
                lambda: self.records.save(progress.user_id, progress.to_record()),
                self.settings.remote_timeout_seconds,
                "Progress sync",
            )
            return True
        except LajanError as e:
            logger.error(f"❌ [ProgressStore] Error syncing progress: {e}")
            self.error = str(e)
            return False
        finally:
            self.is_syncing = False

    def reset_progress(self) -> None:
        logger.info("🔄 [ProgressStore] Resetting progress")
        self.progress = None
        self.error = None
        self._initialized.clear()
