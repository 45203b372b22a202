import secrets
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, status

from readreceipts.api.deps import get_configuration, get_current_user_id, get_plugin
from readreceipts.config import PluginConfiguration
from readreceipts.plugin import Plugin
from readreceipts.schemas.receipt import ConfigResponse

router = APIRouter(tags=["config"])


@router.get("/config", response_model=ConfigResponse)
async def get_config(
    user_id: str = Depends(get_current_user_id),
    config: PluginConfiguration = Depends(get_configuration),
) -> ConfigResponse:
    """Effective tunables, read by the webapp to drive visibility tracking."""
    return ConfigResponse.model_validate(config)


@router.put("/config", response_model=ConfigResponse)
async def replace_config(
    raw: dict[str, Any] = Body(...),
    push_token: str | None = Header(default=None, alias="X-Config-Push-Token"),
    plugin: Plugin = Depends(get_plugin),
) -> ConfigResponse:
    """Host hook: validate and atomically swap in a new configuration."""
    expected = plugin.settings.CONFIG_PUSH_TOKEN
    if not expected or not push_token or not secrets.compare_digest(push_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Configuration push not allowed")
    merged = {**plugin.config.get().model_dump(), **raw}
    return ConfigResponse.model_validate(plugin.on_configuration_change(merged))
