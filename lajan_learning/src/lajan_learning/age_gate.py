"""Age prompt shown once onboarding is complete and no age is known."""

import logging
from typing import Any, Optional

from lajan_learning.errors import LajanError
from lajan_learning.models import MAX_AGE, MIN_AGE
from lajan_learning.session_store import SessionStore

logger = logging.getLogger(__name__)


class AgePrompt:
    def __init__(self, store: SessionStore):
        self.store = store
        self.error: Optional[str] = None

    @property
    def visible(self) -> bool:
        return self.store.session.needs_age_input

    async def submit(self, raw_age: Any) -> bool:
        """
        Validate and save the age, then hide the prompt.

        Invalid input sets `error` and makes no remote call.
        """
        age = parse_age(raw_age)
        if age is None:
            self.error = f"Please enter a valid age between {MIN_AGE} and {MAX_AGE}"
            return False
        try:
            saved = await self.store.update_user_age(age)
        except LajanError as e:
            # Invalid input, or the session ended while the prompt was open
            self.error = str(e)
            return False
        self.error = None
        self.store.dismiss_age_prompt()
        if not saved:
            logger.warning("⚠️ [AgePrompt] Age kept locally, remote update pending")
        return True

    def skip(self) -> None:
        """Hide the prompt for this session; age stays unset."""
        self.error = None
        self.store.dismiss_age_prompt()


def parse_age(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw.isdigit():
            return None
        raw = int(raw)
    if not isinstance(raw, int):
        return None
    if not MIN_AGE <= raw <= MAX_AGE:
        return None
    return raw
