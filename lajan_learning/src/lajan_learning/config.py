"""
Runtime configuration.

Values come from the environment (a local .env file is loaded first).
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Session core settings."""
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_key: Optional[str] = None
    supabase_jwt_secret: Optional[str] = None
    remote_timeout_seconds: float = 10.0
    snapshot_key: str = "lajan-auth-storage"
    snapshot_path: str = ".lajan/session.json"
    reconcile_enabled: bool = True
    reconcile_interval_seconds: float = 300.0
    log_level: str = "INFO"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float, lower: float, upper: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(lower, min(value, upper))


def load_settings() -> Settings:
    """Build settings from the current environment (uncached)."""
    return Settings(
        supabase_url=os.getenv("SUPABASE_URL") or None,
        supabase_anon_key=os.getenv("SUPABASE_ANON_KEY") or None,
        supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY") or None,
        supabase_jwt_secret=os.getenv("SUPABASE_JWT_SECRET") or None,
        remote_timeout_seconds=_env_float("LAJAN_REMOTE_TIMEOUT_SECONDS", 10.0, 1.0, 60.0),
        snapshot_key=os.getenv("LAJAN_SNAPSHOT_KEY", "").strip() or "lajan-auth-storage",
        snapshot_path=os.getenv("LAJAN_SNAPSHOT_PATH", "").strip() or ".lajan/session.json",
        reconcile_enabled=_env_flag("LAJAN_RECONCILE_ENABLED", True),
        reconcile_interval_seconds=_env_float("LAJAN_RECONCILE_INTERVAL_SECONDS", 300.0, 5.0, 86400.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()
