import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from readreceipts.api.deps import get_current_user_id, get_plugin
from readreceipts.plugin import Plugin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/debug", tags=["debug"])


@router.get("/ping")
async def ping() -> dict:
    """Liveness check. No identity required."""
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@router.get("/db")
async def db_check(
    user_id: str = Depends(get_current_user_id),
    plugin: Plugin = Depends(get_plugin),
) -> dict:
    if plugin.store is None:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database not initialized")
    try:
        count = plugin.store.ping()
    except SQLAlchemyError as exc:
        logger.error("Database check failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database connection error",
        ) from exc
    return {
        "status": "ok",
        "read_events_rows": count,
        "time": datetime.now(timezone.utc).isoformat(),
    }
