"""
Unit Tests for configuration loading
"""

import sys
import os

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "lajan_learning", "src"))

from lajan_learning.config import load_settings

ENV_VARS = [
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
    "LAJAN_REMOTE_TIMEOUT_SECONDS",
    "LAJAN_SNAPSHOT_KEY",
    "LAJAN_RECONCILE_ENABLED",
    "LAJAN_RECONCILE_INTERVAL_SECONDS",
    "LOG_LEVEL",
]


class TestLoadSettings:
    """Test suite for load_settings()."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        settings = load_settings()
        assert settings.remote_timeout_seconds == 10.0
        assert settings.snapshot_key == "lajan-auth-storage"
        assert settings.reconcile_enabled
        assert settings.log_level == "INFO"

    def test_values_from_environment(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        monkeypatch.setenv("LAJAN_REMOTE_TIMEOUT_SECONDS", "5")
        monkeypatch.setenv("LAJAN_RECONCILE_ENABLED", "false")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = load_settings()

        assert settings.supabase_url == "https://example.supabase.co"
        assert settings.remote_timeout_seconds == 5.0
        assert not settings.reconcile_enabled
        assert settings.log_level == "DEBUG"

    def test_timeout_is_clamped(self, monkeypatch):
        monkeypatch.setenv("LAJAN_REMOTE_TIMEOUT_SECONDS", "600")
        assert load_settings().remote_timeout_seconds == 60.0

        monkeypatch.setenv("LAJAN_REMOTE_TIMEOUT_SECONDS", "0")
        assert load_settings().remote_timeout_seconds == 1.0

    def test_bad_number_uses_default(self, monkeypatch):
        monkeypatch.setenv("LAJAN_RECONCILE_INTERVAL_SECONDS", "soon")
        assert load_settings().reconcile_interval_seconds == 300.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
