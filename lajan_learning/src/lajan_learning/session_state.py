"""
Session State Data Model

Defines the immutable Session snapshot published by the SessionStore.
"""

from dataclasses import dataclass
from typing import Optional

from lajan_learning.models import User, is_onboarding_complete


@dataclass(frozen=True)
class Session:
    """Snapshot of the current session. Derived flags are set by build()."""
    user: Optional[User] = None
    token: Optional[str] = None
    is_authenticated: bool = False
    is_onboarding_complete: bool = False
    needs_age_input: bool = False
    auto_login_attempted: bool = False
    error: Optional[str] = None
    is_loading: bool = False

    @classmethod
    def build(
        cls,
        user: Optional[User],
        token: Optional[str],
        auto_login_attempted: bool,
        age_prompt_dismissed: bool = False,
        error: Optional[str] = None,
        is_loading: bool = False,
    ) -> "Session":
        """Build a snapshot, deriving authentication and onboarding flags."""
        authenticated = user is not None and bool(token)
        if not authenticated:
            # Never keep half a session around
            user, token = None, None
        onboarded = authenticated and is_onboarding_complete(user)
        needs_age = onboarded and user.age is None and not age_prompt_dismissed
        return cls(
            user=user,
            token=token,
            is_authenticated=authenticated,
            is_onboarding_complete=onboarded,
            needs_age_input=needs_age,
            auto_login_attempted=auto_login_attempted,
            error=error,
            is_loading=is_loading,
        )
