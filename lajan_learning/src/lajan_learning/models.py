"""
User Record Model

Learner profile as mirrored from the remote user-record service.
Remote records use camelCase keys; this module converts in both directions.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class LearningStyle(str, Enum):
    """Learning styles offered during onboarding."""
    VISUAL = "visual"
    PRACTICAL = "practical"


KNOWLEDGE_LEVELS = (1, 2, 3)  # beginner, intermediate, advanced
MIN_AGE = 1
MAX_AGE = 120
MINOR_AGE_LIMIT = 18


@dataclass(frozen=True)
class User:
    """Authenticated learner."""
    id: str
    email: str = ""
    name: str = ""
    verified: bool = False
    role: str = "user"
    avatar: Optional[str] = None
    bio: Optional[str] = None
    learning_style: Optional[LearningStyle] = None
    preferred_topics: List[str] = field(default_factory=list)
    knowledge_level: Optional[int] = None
    age: Optional[int] = None
    is_minor: Optional[bool] = None
    points: int = 0
    streak: int = 0
    level: int = 0
    completed_lessons: List[str] = field(default_factory=list)
    guardian_email: Optional[str] = None
    guardian_connected: bool = False
    created_at: Optional[str] = None
    last_active: Optional[str] = None

    def with_changes(self, **changes: Any) -> "User":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_record(
        cls,
        user_id: str,
        record: Optional[Dict[str, Any]],
        email: str = "",
        name: str = "",
        verified: bool = False,
    ) -> "User":
        """
        Build a User from a remote record.

        Missing or malformed fields are left unset rather than raising.

        Args:
            user_id: Identity provider user id
            record: Remote record (camelCase keys) or None
            email: Email from the identity provider (preferred over the record)
            name: Display name from the identity provider
            verified: Verification flag from the identity provider

        Returns:
            User instance
        """
        data = record or {}
        return cls(
            id=user_id,
            email=email or _as_str(data.get("email")) or "",
            name=name or _as_str(data.get("name")) or "",
            verified=bool(verified or data.get("verified", False)),
            role=_as_str(data.get("role")) or "user",
            avatar=_as_str(data.get("avatar")),
            bio=_as_str(data.get("bio")),
            learning_style=parse_learning_style(data.get("learningStyle")),
            preferred_topics=normalize_topics(data.get("preferredTopics")),
            knowledge_level=_as_int(data.get("knowledgeLevel")),
            age=_as_int(data.get("age")),
            is_minor=data.get("isMinor") if isinstance(data.get("isMinor"), bool) else None,
            points=_as_int(data.get("points")) or 0,
            streak=_as_int(data.get("streak")) or 0,
            level=_as_int(data.get("level")) or 0,
            completed_lessons=normalize_topics(data.get("completedLessons")),
            guardian_email=_as_str(data.get("guardianEmail")),
            guardian_connected=bool(data.get("guardianConnected", False)),
            created_at=_as_str(data.get("createdAt")),
            last_active=_as_str(data.get("lastActive")),
        )

    def to_record(self) -> Dict[str, Any]:
        """Convert to the remote/snapshot record shape."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "verified": self.verified,
            "role": self.role,
            "avatar": self.avatar,
            "bio": self.bio,
            "learningStyle": self.learning_style.value if self.learning_style else None,
            "preferredTopics": list(self.preferred_topics),
            "knowledgeLevel": self.knowledge_level,
            "age": self.age,
            "isMinor": self.is_minor,
            "points": self.points,
            "streak": self.streak,
            "level": self.level,
            "completedLessons": list(self.completed_lessons),
            "guardianEmail": self.guardian_email,
            "guardianConnected": self.guardian_connected,
            "createdAt": self.created_at,
            "lastActive": self.last_active,
        }


def is_onboarding_complete(user: Optional[User]) -> bool:
    """Learning style, topics and knowledge level are all set."""
    if user is None:
        return False
    return (
        user.learning_style is not None
        and len(user.preferred_topics) > 0
        and user.knowledge_level is not None
    )


def parse_learning_style(value: Any) -> Optional[LearningStyle]:
    """Parse a learning style, returning None for unknown values."""
    if isinstance(value, LearningStyle):
        return value
    if isinstance(value, str):
        try:
            return LearningStyle(value.strip().lower())
        except ValueError:
            logger.warning(f"⚠️ [User] Ignoring unknown learning style: {value!r}")
    return None


def normalize_topics(value: Any) -> List[str]:
    """Strip, drop blanks and de-duplicate while keeping order."""
    if not value or isinstance(value, (str, bytes)):
        return []
    if not isinstance(value, Iterable):
        return []
    seen = set()
    topics = []
    for item in value:
        if not isinstance(item, str):
            continue
        topic = item.strip()
        if topic and topic not in seen:
            seen.add(topic)
            topics.append(topic)
    return topics


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None
