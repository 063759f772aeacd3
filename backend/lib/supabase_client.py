"""
Supabase client for backend operations
"""
from typing import Optional

from supabase import create_client, Client
from dotenv import load_dotenv

from lajan_learning.config import get_settings

# Load environment variables
load_dotenv()
load_dotenv('../.env')  # Also try parent directory

_supabase_client: Optional[Client] = None


def supabase_configured() -> bool:
    settings = get_settings()
    return bool(settings.supabase_url and settings.supabase_service_key)


def get_supabase_client() -> Client:
    """Get or create Supabase client singleton"""
    global _supabase_client

    if _supabase_client is None:
        settings = get_settings()
        # Service role key: the backend writes profile and progress rows for any user
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")

        _supabase_client = create_client(settings.supabase_url, settings.supabase_service_key)

    return _supabase_client
