"""Lajan Learning session core: auth, onboarding and progress state"""
from .errors import AuthError, InvalidInputError, LajanError, NotAuthenticatedError, NotFoundError, RemoteServiceError, RemoteTimeoutError
from .models import LearningStyle, User
from .session_state import Session
from .session_store import LogoutResult, SessionStore
from .onboarding_state import OnboardingFlow, OnboardingStep, entry_route, next_step
from .progress import Progress, ProgressStore

__all__ = [
    "AuthError",
    "InvalidInputError",
    "LajanError",
    "NotAuthenticatedError",
    "NotFoundError",
    "RemoteServiceError",
    "RemoteTimeoutError",
    "LearningStyle",
    "User",
    "Session",
    "LogoutResult",
    "SessionStore",
    "OnboardingFlow",
    "OnboardingStep",
    "entry_route",
    "next_step",
    "Progress",
    "ProgressStore",
]
