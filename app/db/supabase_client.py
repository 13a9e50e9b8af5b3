"""Shared Supabase client for the db layer."""

from functools import lru_cache

from supabase import Client, create_client
from supabase.client import ClientOptions

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

POSTGREST_TIMEOUT_SECONDS = 30
STORAGE_TIMEOUT_SECONDS = 60


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Service-role client, created once per process.

    Raises:
        RuntimeError: If the client cannot be created from settings
    """
    settings = get_settings()
    options = ClientOptions(
        postgrest_client_timeout=POSTGREST_TIMEOUT_SECONDS,
        storage_client_timeout=STORAGE_TIMEOUT_SECONDS,
    )

    try:
        client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY, options)
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e

    logger.info(f"Supabase client ready for {settings.SUPABASE_URL}")
    return client
