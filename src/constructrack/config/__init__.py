"""Constructrack configuration module.

Settings come from CONSTRUCTRACK_* environment variables (or a .env file)
through pydantic-settings.

Usage:
    from constructrack.config import get_settings

    settings = get_settings()
    print(settings.queue_db_path)
"""

from functools import lru_cache

from constructrack.config.settings import Settings

__all__ = ["Settings", "get_settings"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide Settings instance.

    Call get_settings.cache_clear() to pick up changed environment variables.
    """
    return Settings()
