"""
readreceipts: FastAPI entry point.

Served behind Mattermost at /plugins/mattermost-readreceipts; the host
injects the acting user's id as the ``Mattermost-User-Id`` header.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from readreceipts.api import config, debug, receipts
from readreceipts.config import settings
from readreceipts.plugin import Plugin
from readreceipts.services.receipt_service import PostNotFound, StorageError
from readreceipts.websocket.handlers import receipts_ws_handler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def create_app(plugin: Plugin | None = None) -> FastAPI:
    plugin = plugin or Plugin(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await plugin.activate()
        yield
        await plugin.deactivate()

    app = FastAPI(
        title="readreceipts",
        description="Read receipts for Mattermost",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.plugin = plugin

    # ---------------------------------------------------------------------------
    # Routers
    # ---------------------------------------------------------------------------
    app.include_router(receipts.router, prefix=API_PREFIX)
    app.include_router(config.router, prefix=API_PREFIX)
    app.include_router(debug.router, prefix=API_PREFIX)

    # ---------------------------------------------------------------------------
    # WebSocket endpoint
    # ---------------------------------------------------------------------------

    @app.websocket(f"{API_PREFIX}/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await receipts_ws_handler(websocket, plugin.manager)

    # ---------------------------------------------------------------------------
    # Exception handlers
    # ---------------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(PostNotFound)
    async def post_not_found_handler(request: Request, exc: PostNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        # Details were logged where the error was raised
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app


app = create_app()
