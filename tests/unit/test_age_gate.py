"""
Unit Tests for the Age Prompt
"""

import sys
import os

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "lajan_learning", "src"))

from lajan_learning.age_gate import AgePrompt, parse_age

from conftest import EMAIL, ONBOARDED, PASSWORD, seed_account


class TestAgePrompt:
    """Test suite for AgePrompt."""

    @pytest.fixture
    def prompt(self, store):
        return AgePrompt(store)

    @pytest.fixture
    def user_id(self, identity, users):
        return seed_account(identity, users, **ONBOARDED)

    @pytest.mark.asyncio
    async def test_visible_only_after_onboarding(self, prompt, store, identity, users):
        seed_account(identity, users)
        await store.sign_in(EMAIL, PASSWORD)
        assert not prompt.visible

        await store.set_learning_style("visual")
        await store.set_preferred_topics(["budgeting"])
        await store.set_knowledge_level(1)
        assert prompt.visible

    @pytest.mark.asyncio
    async def test_submit_saves_age(self, prompt, store, users, user_id):
        await store.sign_in(EMAIL, PASSWORD)

        assert await prompt.submit("16")

        assert not prompt.visible
        assert store.user.age == 16
        assert store.user.is_minor is True
        assert users.records[user_id]["age"] == 16

    @pytest.mark.asyncio
    async def test_invalid_age_stays_local(self, prompt, store, users, user_id):
        await store.sign_in(EMAIL, PASSWORD)

        for raw in ("0", "121", "abc", "", -4, 12.5, None, True):
            assert not await prompt.submit(raw)
            assert prompt.error == "Please enter a valid age between 1 and 120"

        assert prompt.visible
        assert users.update_calls == []

    @pytest.mark.asyncio
    async def test_skip_hides_for_session(self, prompt, store, user_id):
        await store.sign_in(EMAIL, PASSWORD)

        prompt.skip()

        assert not prompt.visible
        assert store.user.age is None
        assert store.session.is_onboarding_complete

    @pytest.mark.asyncio
    async def test_remote_failure_still_hides_prompt(self, prompt, store, users, user_id):
        await store.sign_in(EMAIL, PASSWORD)
        users.fail_writes = True

        assert await prompt.submit(25)

        assert not prompt.visible
        assert store.user.age == 25
        assert store.session.error == "Failed to update age"

    @pytest.mark.asyncio
    async def test_session_ended_while_open(self, prompt, store, users, user_id):
        await store.sign_in(EMAIL, PASSWORD)
        assert prompt.visible
        await store.logout()

        assert not await prompt.submit("30")

        assert prompt.error == "No authenticated user found"
        assert "age" not in users.records[user_id]

    def test_parse_age(self):
        assert parse_age(" 42 ") == 42
        assert parse_age(1) == 1
        assert parse_age(120) == 120
        assert parse_age("1e2") is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
