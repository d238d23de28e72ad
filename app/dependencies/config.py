"""
FastAPI dependency for injecting application settings.

Routes receive settings through this function so tests can swap in a fully
constructed ``AppSettings`` via ``app.dependency_overrides``.
"""

from app.core.config import AppSettings, get_settings


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning the process-wide application settings."""
    return get_settings()


__all__ = ["get_app_settings"]
