"""
Centralized database client management.

This module provides singleton Supabase client instances so every service
shares the same connection to the hosted project.
"""
import os
import logging
from functools import lru_cache
from typing import Optional
from supabase import create_client, Client
from dotenv import load_dotenv

from crm.errors import ExternalServiceError

load_dotenv()

logger = logging.getLogger(__name__)


class DatabaseConfig:
    """Configuration for database connections."""

    def __init__(self):
        self.supabase_url = os.getenv("SUPABASE_URL")
        self.supabase_anon_key = os.getenv("SUPABASE_KEY")
        self.supabase_service_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

        # Validate required environment variables
        if not self.supabase_url:
            raise ValueError("SUPABASE_URL environment variable is required")
        if not self.supabase_anon_key:
            raise ValueError("SUPABASE_KEY environment variable is required")

    @property
    def service_key(self) -> str:
        """Get service key, falling back to anon key if not set."""
        return self.supabase_service_key or self.supabase_anon_key


# Singleton config instance
_config: Optional[DatabaseConfig] = None


def get_config() -> DatabaseConfig:
    """Get the database configuration singleton."""
    global _config
    if _config is None:
        _config = DatabaseConfig()
    return _config


@lru_cache(maxsize=1)
def get_supabase_service() -> Client:
    """
    Get the Supabase service client (bypasses RLS).

    Services filter every query by organization_id themselves, so the
    service role is used for all CRM reads and writes.

    Returns:
        Supabase Client with service role permissions
    """
    config = get_config()
    return create_client(config.supabase_url, config.service_key)


def execute(query, action: str):
    """
    Execute a PostgREST query, converting client failures.

    Args:
        query: A built query (table(...).select/insert/update/...)
        action: Short description for logs and the error message

    Returns:
        The APIResponse (may be None for maybe_single() with no row)

    Raises:
        ExternalServiceError: If the database call fails
    """
    try:
        return query.execute()
    except Exception as e:
        logger.error(f"Database error while {action}: {e}")
        raise ExternalServiceError("database", f"failed while {action}") from e


def rows(response) -> list:
    """Data list of a response, tolerating None responses."""
    if response is None or not getattr(response, "data", None):
        return []
    data = response.data
    return data if isinstance(data, list) else [data]
