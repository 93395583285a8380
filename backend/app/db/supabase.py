"""
Supabase client for server-side persistence.

Uses the service role key, which bypasses row-level security; ownership is
enforced by the engine's access context on every read and write instead.
"""
import logging
from functools import lru_cache

from supabase import create_client, Client

from app.config import Settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """Get the process-wide Supabase client."""
    supabase_url = Settings.supabase_url()
    supabase_key = Settings.supabase_service_role_key()

    if not supabase_url:
        raise ValueError("SUPABASE_URL environment variable is required")
    if not supabase_key:
        raise ValueError("SUPABASE_SERVICE_ROLE_KEY environment variable is required")

    logger.info("Connecting to Supabase at %s", supabase_url)
    try:
        return create_client(supabase_url, supabase_key)
    except Exception as e:
        raise ValueError(f"Failed to create Supabase client: {str(e)}") from e
