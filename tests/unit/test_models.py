"""
Unit Tests for the User and Session models
"""

import sys
import os

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "lajan_learning", "src"))

from lajan_learning.models import LearningStyle, User, is_onboarding_complete, normalize_topics
from lajan_learning.session_state import Session


class TestUser:
    """Test suite for User."""

    def test_from_record_maps_camel_case(self):
        user = User.from_record("u1", {
            "name": "Ada",
            "learningStyle": "Practical",
            "preferredTopics": ["budgeting", "saving"],
            "knowledgeLevel": 2,
            "age": 30,
            "isMinor": False,
        }, email="ada@example.com", verified=True)

        assert user.learning_style == LearningStyle.PRACTICAL
        assert user.preferred_topics == ["budgeting", "saving"]
        assert user.knowledge_level == 2
        assert user.age == 30
        assert user.is_minor is False
        assert user.email == "ada@example.com"
        assert user.verified

    def test_from_record_tolerates_garbage(self):
        user = User.from_record("u1", {
            "learningStyle": 7,
            "preferredTopics": "budgeting",
            "knowledgeLevel": "two",
            "age": True,
            "points": None,
        })

        assert user.learning_style is None
        assert user.preferred_topics == []
        assert user.knowledge_level is None
        assert user.age is None
        assert user.points == 0
        assert user.role == "user"

    def test_from_missing_record(self):
        user = User.from_record("u1", None, email="a@b.co", name="A")
        assert user.id == "u1"
        assert user.name == "A"
        assert not is_onboarding_complete(user)

    def test_record_round_trip_keeps_onboarding(self):
        user = User(
            id="u1",
            learning_style=LearningStyle.VISUAL,
            preferred_topics=["tax"],
            knowledge_level=3,
        )
        restored = User.from_record("u1", user.to_record())
        assert restored == user

    def test_normalize_topics(self):
        assert normalize_topics([" a ", "b", "a", "", 3, "b"]) == ["a", "b"]
        assert normalize_topics(None) == []


class TestSession:
    """Test suite for Session.build()."""

    def test_half_session_is_dropped(self):
        session = Session.build(User(id="u1"), None, auto_login_attempted=True)
        assert not session.is_authenticated
        assert session.user is None

        session = Session.build(None, "tok", auto_login_attempted=True)
        assert not session.is_authenticated
        assert session.token is None

    def test_needs_age_input(self):
        user = User(id="u1", learning_style=LearningStyle.VISUAL, preferred_topics=["a"], knowledge_level=1)

        assert Session.build(user, "tok", True).needs_age_input
        assert not Session.build(user, "tok", True, age_prompt_dismissed=True).needs_age_input
        assert not Session.build(user.with_changes(age=20), "tok", True).needs_age_input
        assert not Session.build(user.with_changes(knowledge_level=None), "tok", True).needs_age_input

    def test_session_is_immutable(self):
        session = Session()
        with pytest.raises(AttributeError):
            session.token = "x"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
