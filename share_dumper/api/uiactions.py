import logging

from fastapi import APIRouter, Depends

from share_dumper.config import Settings
from share_dumper.dependencies import get_settings

router = APIRouter(prefix="/api", tags=["uiactions"])


@router.get("/settings", response_model=Settings)
async def read_settings(settings: Settings = Depends(get_settings)):
    """Current application settings. Passwords are never part of settings."""
    logging.debug("Settings endpoint called", extra={"operation": "api_settings"})
    return settings


@router.get("/config-info")
async def get_config_info(settings: Settings = Depends(get_settings)):
    """Which settings file this host loaded."""
    logging.debug("Config info endpoint called", extra={"operation": "api_config_info"})
    return settings.config_file_info


@router.get("/defaults")
async def get_form_defaults(settings: Settings = Depends(get_settings)):
    """Values the connect and submit forms start from."""
    return {
        "default_server": settings.default_server,
        "default_server_name": settings.display_name_for(settings.default_server),
        "server_aliases": settings.server_aliases,
        "mount_root": settings.mount_root,
        "rsync_args": settings.rsync_flags.arguments,
    }
