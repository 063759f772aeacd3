"""
FastAPI Backend for Lajan Learning - WITH SUPABASE INTEGRATION

Provides REST API endpoints with:
- JWT Authentication
- User profile and onboarding fields
- Learning progress (set-if-absent creation, idempotent module completion)
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
import asyncio
import os
import sys
import time
from datetime import datetime as dt
import signal

# Add the lajan_learning package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'lajan_learning', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lajan_learning.config import get_settings
from lajan_learning.errors import LajanError
from lajan_learning.memory import InMemoryProgressRecordService, InMemoryUserRecordService
from lajan_learning.models import MAX_AGE, MIN_AGE, MINOR_AGE_LIMIT, LearningStyle, User, is_onboarding_complete, normalize_topics
from lajan_learning.onboarding_state import next_step
from lajan_learning.progress import ProgressStore
from lajan_learning.services import ProgressRecordService, UserRecordService, call_remote

# Setup logging with colors and structured output
from lib.logger import setup_logging, get_logger

settings = get_settings()
setup_logging(level=settings.log_level, use_colors=True)

# Create main logger
logger = get_logger("backend.main")

from lib.supabase_client import get_supabase_client, supabase_configured
from lib.auth import get_current_user

_user_records: Optional[UserRecordService] = None
_progress_records: Optional[ProgressRecordService] = None
# Progress writes replace the whole record, so each user is serialised
_progress_locks: Dict[str, asyncio.Lock] = {}


def _progress_lock(user_id: str) -> asyncio.Lock:
    if user_id not in _progress_locks:
        _progress_locks[user_id] = asyncio.Lock()
    return _progress_locks[user_id]


def get_user_records() -> UserRecordService:
    """Get or create the user-record service singleton."""
    global _user_records
    if _user_records is None:
        if supabase_configured():
            from lajan_learning.supabase_services import SupabaseUserRecordService
            _user_records = SupabaseUserRecordService(get_supabase_client())
        else:
            logger.warning("Supabase not configured, using in-memory user records")
            _user_records = InMemoryUserRecordService()
    return _user_records


def get_progress_records() -> ProgressRecordService:
    """Get or create the progress-record service singleton."""
    global _progress_records
    if _progress_records is None:
        if supabase_configured():
            from lajan_learning.supabase_services import SupabaseProgressRecordService
            _progress_records = SupabaseProgressRecordService(get_supabase_client())
        else:
            logger.warning("Supabase not configured, using in-memory progress records")
            _progress_records = InMemoryProgressRecordService()
    return _progress_records


# Initialize FastAPI app
app = FastAPI(
    title="Lajan Learning API",
    description="User profile, onboarding and learning progress for Lajan Learning",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8081",
        "http://localhost:19006",
        "http://127.0.0.1:8081",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    bio: Optional[str] = None
    learning_style: Optional[LearningStyle] = None
    preferred_topics: Optional[List[str]] = None
    knowledge_level: Optional[int] = Field(None, ge=1, le=3)
    age: Optional[int] = Field(None, ge=MIN_AGE, le=MAX_AGE)

    @field_validator("preferred_topics")
    @classmethod
    def topics_not_empty(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return value
        topics = normalize_topics(value)
        if not topics:
            raise ValueError("Select at least one topic")
        return topics


class UserResponse(BaseModel):
    user: Dict[str, Any]
    onboarding_complete: bool
    next_step: str
    needs_age_input: bool


class ModuleCompletion(BaseModel):
    topic_id: str = Field(..., min_length=1)
    module_id: str = Field(..., min_length=1)
    score: float = Field(1.0, ge=0.0, le=1.0)


class ProgressResponse(BaseModel):
    progress: Dict[str, Any]
    points_earned: int = 0


# ==================== Helper Functions ====================

def _user_response(user: User) -> UserResponse:
    onboarded = is_onboarding_complete(user)
    return UserResponse(
        user=user.to_record(),
        onboarding_complete=onboarded,
        next_step=next_step(user).value,
        needs_age_input=onboarded and user.age is None,
    )


async def load_or_create_user(records: UserRecordService, user: dict) -> User:
    """Load the caller's profile, creating an empty one if it is missing."""
    timeout = settings.remote_timeout_seconds
    record = await call_remote(lambda: records.get(user["id"]), timeout, "Profile fetch")
    if record is None:
        record = {
            "email": user.get("email") or "",
            "role": "user",
            "points": 0,
            "preferredTopics": [],
            "createdAt": dt.now().isoformat(),
        }
        await call_remote(lambda: records.create(user["id"], record), timeout, "Create user record")
        logger.info("Created user record", data={"user_id": user["id"][:20] + "..."})
    return User.from_record(user["id"], record, email=user.get("email") or "")


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Lajan Learning API",
        "version": "1.0.0",
        "supabase_connected": supabase_configured(),
    }


@app.get("/api/users/me", response_model=UserResponse)
async def get_me(
    user: dict = Depends(get_current_user),
    records: UserRecordService = Depends(get_user_records),
):
    """Get the caller's profile and onboarding state."""
    start = time.time()
    logger.request("GET", "/api/users/me", user_id=user["id"])
    try:
        profile = await load_or_create_user(records, user)
    except LajanError as e:
        logger.error("Failed to load profile", error=e)
        raise HTTPException(status_code=503, detail=str(e))
    logger.response(200, "/api/users/me", time.time() - start)
    return _user_response(profile)


@app.patch("/api/users/me", response_model=UserResponse)
async def update_me(
    update: ProfileUpdate,
    user: dict = Depends(get_current_user),
    records: UserRecordService = Depends(get_user_records),
):
    """
    Update profile and onboarding fields.

    Fields left out of the body are untouched; age also sets isMinor.
    """
    logger.request("PATCH", "/api/users/me", user_id=user["id"])
    try:
        profile = await load_or_create_user(records, user)
    except LajanError as e:
        logger.error("Failed to load profile", error=e)
        raise HTTPException(status_code=503, detail=str(e))

    changes: Dict[str, Any] = {}
    remote: Dict[str, Any] = {}
    if update.name is not None:
        changes["name"] = remote["name"] = update.name.strip()
    if update.bio is not None:
        changes["bio"] = remote["bio"] = update.bio
    if update.learning_style is not None:
        changes["learning_style"] = update.learning_style
        remote["learningStyle"] = update.learning_style.value
    if update.preferred_topics is not None:
        changes["preferred_topics"] = update.preferred_topics
        remote["preferredTopics"] = update.preferred_topics
    if update.knowledge_level is not None:
        changes["knowledge_level"] = remote["knowledgeLevel"] = update.knowledge_level
    if update.age is not None:
        changes["age"] = remote["age"] = update.age
        changes["is_minor"] = remote["isMinor"] = update.age < MINOR_AGE_LIMIT

    if not remote:
        return _user_response(profile)

    remote["updatedAt"] = dt.now().isoformat()
    try:
        await call_remote(
            lambda: records.update(user["id"], remote),
            settings.remote_timeout_seconds,
            "Profile update",
        )
    except LajanError as e:
        logger.error("Failed to update profile", error=e, data={"fields": sorted(remote)})
        raise HTTPException(status_code=503, detail=str(e))

    logger.success("Profile updated", data={"fields": sorted(changes)})
    return _user_response(profile.with_changes(**changes))


@app.get("/api/progress/me", response_model=ProgressResponse)
async def get_my_progress(
    user: dict = Depends(get_current_user),
    records: ProgressRecordService = Depends(get_progress_records),
):
    """Load the caller's progress, creating a zeroed record on first use."""
    logger.request("GET", "/api/progress/me", user_id=user["id"])
    store = ProgressStore(records, settings)
    progress = await store.initialize_progress(user["id"], user.get("token") or "server")
    if not store.is_initialized(user["id"]):
        raise HTTPException(status_code=503, detail=store.error or "Progress unavailable")
    return ProgressResponse(progress=progress.to_record())


@app.post("/api/progress/me/modules", response_model=ProgressResponse)
async def complete_module(
    completion: ModuleCompletion,
    user: dict = Depends(get_current_user),
    records: ProgressRecordService = Depends(get_progress_records),
    users: UserRecordService = Depends(get_user_records),
):
    """
    Mark a module completed and credit the points to the user record.

    Completing it again earns no extra points.
    """
    logger.request("POST", "/api/progress/me/modules", user_id=user["id"])
    async with _progress_lock(user["id"]):
        store = ProgressStore(records, settings)
        await store.initialize_progress(user["id"], user.get("token") or "server")
        if not store.is_initialized(user["id"]):
            raise HTTPException(status_code=503, detail=store.error or "Progress unavailable")

        points = await store.complete_module(user["id"], completion.topic_id, completion.module_id, completion.score)
        if store.error:
            raise HTTPException(status_code=503, detail=store.error)
        if points:
            await _credit_points(users, user["id"], points, store.progress.streak)

    logger.info("Module completed", data={
        "topic": completion.topic_id,
        "module": completion.module_id,
        "points": points,
    })
    return ProgressResponse(progress=store.progress.to_record(), points_earned=points)


async def _credit_points(users: UserRecordService, user_id: str, points: int, streak: int) -> None:
    """Add points to the user record; a failure is logged, progress is already saved."""
    try:
        record = await call_remote(lambda: users.get(user_id), settings.remote_timeout_seconds, "Profile fetch")
        if record is None:
            logger.warning("No user record to credit points to", data={"user_id": user_id})
            return
        total = (record.get("points") or 0) + points
        await call_remote(
            lambda: users.update(user_id, {"points": total, "streak": streak, "updatedAt": dt.now().isoformat()}),
            settings.remote_timeout_seconds,
            "Points update",
        )
    except LajanError as e:
        logger.error("Failed to credit points", error=e, data={"user_id": user_id})


@app.on_event("startup")
async def startup_event():
    logger.section("LAJAN LEARNING API STARTUP", {
        "supabase": supabase_configured(),
        "remote_timeout_seconds": settings.remote_timeout_seconds,
    })


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=8000)
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
