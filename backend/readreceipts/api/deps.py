from fastapi import Depends, Header, HTTPException, Request, status

from readreceipts.config import PluginConfiguration
from readreceipts.plugin import Plugin
from readreceipts.services.receipt_service import ReceiptService

# Set by the Mattermost server on every authenticated plugin request
USER_ID_HEADER = "Mattermost-User-Id"


def get_plugin(request: Request) -> Plugin:
    return request.app.state.plugin


def get_current_user_id(
    user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
) -> str:
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized")
    return user_id


def get_configuration(plugin: Plugin = Depends(get_plugin)) -> PluginConfiguration:
    return plugin.config.get()


def get_service(plugin: Plugin = Depends(get_plugin)) -> ReceiptService:
    """The receipt service, or 503 while the plugin is disabled."""
    if not plugin.config.get().enable or plugin.service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Read receipts are disabled",
        )
    return plugin.service
