"""
Unit Tests for Onboarding State

Tests the step derivation, entry routing and the onboarding screen driver.
"""

import itertools
import sys
import os

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "lajan_learning", "src"))

from lajan_learning.errors import InvalidInputError
from lajan_learning.models import LearningStyle, User
from lajan_learning.onboarding_state import (
    AUTH_ROUTE,
    OnboardingFlow,
    OnboardingStep,
    completed_steps,
    entry_route,
    next_step,
)
from lajan_learning.session_state import Session

from conftest import EMAIL, PASSWORD, seed_account


class TestNextStep:
    """next_step()"""

    def test_fresh_user_scenario(self):
        user = User(id="u1")
        assert next_step(user) == OnboardingStep.LEARNING_STYLE

        user = user.with_changes(learning_style=LearningStyle.VISUAL)
        assert next_step(user) == OnboardingStep.TOPICS

        user = user.with_changes(preferred_topics=["budgeting"])
        assert next_step(user) == OnboardingStep.KNOWLEDGE_ASSESSMENT

        user = user.with_changes(knowledge_level=2)
        assert next_step(user) == OnboardingStep.MAIN

    def test_no_user(self):
        assert next_step(None) == OnboardingStep.LEARNING_STYLE

    def test_total_over_all_shapes(self):
        styles = [None, LearningStyle.VISUAL, LearningStyle.PRACTICAL]
        topics = [[], ["budgeting"]]
        levels = [None, 1, 3]
        for style, topic_list, level in itertools.product(styles, topics, levels):
            user = User(id="u1", learning_style=style, preferred_topics=topic_list, knowledge_level=level)
            assert next_step(user) in OnboardingStep

    def test_monotonic_as_fields_are_filled(self):
        user = User(id="u1")
        fills = [
            {"learning_style": LearningStyle.PRACTICAL},
            {"preferred_topics": ["saving"]},
            {"knowledge_level": 1},
            {"age": 30},
        ]
        previous = next_step(user).order
        for fill in fills:
            user = user.with_changes(**fill)
            current = next_step(user).order
            assert current >= previous
            previous = current

    def test_completed_steps(self):
        user = User(id="u1", learning_style=LearningStyle.VISUAL)
        assert completed_steps(user) == [OnboardingStep.LEARNING_STYLE]

    def test_routes(self):
        assert OnboardingStep.LEARNING_STYLE.route == "/onboarding"
        assert OnboardingStep.MAIN.route == "/(tabs)"


class TestEntryRoute:
    """entry_route()"""

    def test_unknown_while_checking(self):
        assert entry_route(Session()) is None

    def test_anonymous_goes_to_auth(self):
        session = Session.build(None, None, auto_login_attempted=True)
        assert entry_route(session) == AUTH_ROUTE

    def test_authenticated_resumes_step(self):
        user = User(id="u1", learning_style=LearningStyle.VISUAL)
        session = Session.build(user, "tok", auto_login_attempted=True)
        assert entry_route(session) == OnboardingStep.TOPICS.route


class TestOnboardingFlow:
    """Screen driver."""

    @pytest.fixture
    def flow(self, store, navigator, progress):
        return OnboardingFlow(store, navigator, progress)

    @pytest.mark.asyncio
    async def test_full_flow_navigates_each_step(self, flow, store, identity, users, navigator, progress_records):
        user_id = seed_account(identity, users)
        await store.sign_in(EMAIL, PASSWORD)

        assert flow.resume() == OnboardingStep.LEARNING_STYLE
        assert await flow.choose_learning_style("visual") == OnboardingStep.TOPICS
        assert await flow.choose_topics(["budgeting"]) == OnboardingStep.KNOWLEDGE_ASSESSMENT
        assert await flow.choose_knowledge_level(2) == OnboardingStep.MAIN

        assert navigator.history == [
            ("replace", "/onboarding"),
            ("replace", "/onboarding/topics"),
            ("replace", "/onboarding/knowledge-assessment"),
            ("replace", "/(tabs)"),
        ]
        assert progress_records.creations == {user_id: 1}
        assert store.session.is_onboarding_complete

    @pytest.mark.asyncio
    async def test_resume_mid_onboarding(self, flow, store, identity, users, navigator):
        seed_account(identity, users, learningStyle="practical")
        await store.sign_in(EMAIL, PASSWORD)

        assert flow.resume() == OnboardingStep.TOPICS
        assert navigator.current == "/onboarding/topics"

    @pytest.mark.asyncio
    async def test_invalid_choice_does_not_navigate(self, flow, store, identity, users, navigator):
        seed_account(identity, users)
        await store.sign_in(EMAIL, PASSWORD)

        with pytest.raises(InvalidInputError):
            await flow.choose_learning_style("auditory")
        assert navigator.history == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
