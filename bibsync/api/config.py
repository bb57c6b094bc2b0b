"""
Configuration API endpoints.
"""

from fastapi import APIRouter
from pydantic import BaseModel
import logging

from bibsync.config.settings import get_settings

router = APIRouter()
logger = logging.getLogger(__name__)


class ConfigResponse(BaseModel):
    """Current configuration response. Tokens are never returned."""
    api_version: str
    user_id: str
    database_path: str
    cache_dir: str
    remote_api_url: str
    file_store_api_url: str
    remote_api_configured: bool
    file_store_configured: bool
    queue_max_retries: int
    sync_interval_seconds: int
    auto_sync: bool


@router.get("/config", response_model=ConfigResponse)
async def get_config():
    """
    Get current configuration.

    Returns:
        Effective, non-secret settings.
    """
    settings = get_settings()

    return ConfigResponse(
        api_version=settings.version,
        user_id=settings.user_id,
        database_path=str(settings.resolved_database_path),
        cache_dir=str(settings.resolved_cache_dir),
        remote_api_url=settings.remote_api_url,
        file_store_api_url=settings.file_store_api_url,
        remote_api_configured=bool(settings.remote_api_token),
        file_store_configured=bool(settings.file_store_access_token),
        queue_max_retries=settings.queue_max_retries,
        sync_interval_seconds=settings.sync_interval_seconds,
        auto_sync=settings.auto_sync,
    )


@router.get("/version")
async def get_version():
    """
    Get backend API version.

    Used by the UI process to check compatibility.

    Returns:
        API version information.
    """
    settings = get_settings()
    return {
        "api_version": settings.version,
        "service": "bibsync API"
    }
