"""
Onboarding State Management

Derives the onboarding step from the user record and drives the onboarding
screens through it. The step is always recomputed from the user, so a
restart resumes at the first unfinished step.
"""

import logging
from enum import Enum
from typing import Any, Iterable, List, Optional

from lajan_learning.models import User
from lajan_learning.progress import ProgressStore
from lajan_learning.services import Navigator
from lajan_learning.session_state import Session
from lajan_learning.session_store import SessionStore

logger = logging.getLogger(__name__)

AUTH_ROUTE = "/auth"


class OnboardingStep(Enum):
    """Onboarding steps, in order."""
    LEARNING_STYLE = "learning_style"
    TOPICS = "topics"
    KNOWLEDGE_ASSESSMENT = "knowledge_assessment"
    MAIN = "main"

    @property
    def route(self) -> str:
        return _ROUTES[self]

    @property
    def order(self) -> int:
        return _ORDER.index(self)


_ORDER = [
    OnboardingStep.LEARNING_STYLE,
    OnboardingStep.TOPICS,
    OnboardingStep.KNOWLEDGE_ASSESSMENT,
    OnboardingStep.MAIN,
]

_ROUTES = {
    OnboardingStep.LEARNING_STYLE: "/onboarding",
    OnboardingStep.TOPICS: "/onboarding/topics",
    OnboardingStep.KNOWLEDGE_ASSESSMENT: "/onboarding/knowledge-assessment",
    OnboardingStep.MAIN: "/(tabs)",
}


def next_step(user: Optional[User]) -> OnboardingStep:
    """
    First onboarding step the user has not finished.

    Defined for every user shape, including no user at all.
    """
    if user is None or user.learning_style is None:
        return OnboardingStep.LEARNING_STYLE
    if not user.preferred_topics:
        return OnboardingStep.TOPICS
    if user.knowledge_level is None:
        return OnboardingStep.KNOWLEDGE_ASSESSMENT
    return OnboardingStep.MAIN


def completed_steps(user: Optional[User]) -> List[OnboardingStep]:
    """Steps before the current one."""
    return _ORDER[:next_step(user).order]


def entry_route(session: Session) -> Optional[str]:
    """
    Route to open the app on.

    Returns:
        None while the first auth event is pending, the auth route when
        anonymous, otherwise the route of the next onboarding step
    """
    if not session.auto_login_attempted:
        return None
    if not session.is_authenticated:
        return AUTH_ROUTE
    return next_step(session.user).route


class OnboardingFlow:
    """
    Screen driver for onboarding.

    Each choice goes through the SessionStore mutator, then navigates to
    whatever step the updated user is on.
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

    @property
    def current_step(self) -> OnboardingStep:
        return next_step(self.store.user)

    def resume(self) -> OnboardingStep:
        step = self.current_step
        self.navigator.replace(step.route)
        return step

    async def choose_learning_style(self, style: Any) -> OnboardingStep:
        await self.store.set_learning_style(style)
        return self._advance()

    async def choose_topics(self, topics: Iterable[str]) -> OnboardingStep:
        await self.store.set_preferred_topics(topics)
        return self._advance()

    async def choose_knowledge_level(self, level: int) -> OnboardingStep:
        """
        Finish the knowledge assessment.

        Also initialises the learning progress record; the legacy bridge may
        do the same concurrently, which is safe.
        """
        await self.store.set_knowledge_level(level)
        session = self.store.session
        if self.progress_initializer is not None and session.is_authenticated:
            await self.progress_initializer.initialize_progress(session.user.id, session.token)
        return self._advance()

    def _advance(self) -> OnboardingStep:
        step = self.current_step
        logger.info(f"🧭 [Onboarding] Next step: {step.value}")
        self.navigator.replace(step.route)
        return step
