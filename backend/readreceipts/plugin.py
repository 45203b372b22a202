"""
Plugin lifecycle: owns every long-lived collaborator.

activate():   load configuration, open the store, ensure the schema, start
              the Redis relay and the retention sweep.
deactivate(): stop background tasks and release connections.
"""

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.engine import Engine

from readreceipts.config import ConfigurationHolder, PluginConfiguration, Settings, resolve_database_url
from readreceipts.database import create_db_engine
from readreceipts.mattermost import MattermostClient, PostLookup
from readreceipts.redis.client import close_redis, init_redis
from readreceipts.services.receipt_service import ReceiptService
from readreceipts.store import ReceiptStore, new_store
from readreceipts.tasks.retention import RetentionSweeper
from readreceipts.websocket.broadcaster import Broadcaster
from readreceipts.websocket.manager import ConnectionManager

logger = logging.getLogger(__name__)


class Plugin:
    def __init__(
        self,
        settings: Settings,
        lookup: PostLookup | None = None,
        engine: Engine | None = None,
    ) -> None:
        self.settings = settings
        self.config = ConfigurationHolder()
        self.manager = ConnectionManager()
        self.broadcaster = Broadcaster(self.manager)
        self.lookup = lookup or MattermostClient(
            settings.MATTERMOST_URL,
            settings.MATTERMOST_TOKEN,
            timeout=settings.MATTERMOST_TIMEOUT,
        )
        self.engine = engine
        self._owns_engine = engine is None
        self.store: ReceiptStore | None = None
        self.service: ReceiptService | None = None
        self.sweeper: RetentionSweeper | None = None

    def on_configuration_change(self, raw: Mapping[str, Any]) -> PluginConfiguration:
        try:
            new = self.config.replace(raw)
        except ValueError as exc:
            logger.error("Rejected invalid plugin configuration: %s", exc)
            raise
        logger.info(
            "Plugin configuration applied (enable=%s retention_days=%s log_level=%s)",
            new.enable,
            new.retention_days,
            new.log_level,
        )
        return new

    def open_store(self) -> ReceiptStore:
        if self.engine is None:
            self.engine = create_db_engine(resolve_database_url(self.settings))
        store = new_store(self.engine)
        store.initialize()
        store.initialize_channel_reads()
        self.store = store
        self.service = ReceiptService(store, self.lookup, self.broadcaster)
        logger.debug("Using %s store", store.dialect)
        return store

    async def activate(self) -> None:
        self.on_configuration_change(self.settings.plugin_defaults())
        if not self.config.get().enable:
            # The store is still opened so the plugin can be enabled at runtime.
            logger.info("Plugin disabled via configuration")

        try:
            store = self.open_store()
        except Exception as exc:
            logger.error("Failed to initialize store: %s", exc)
            raise

        await init_redis(self.settings.REDIS_URL)
        self.broadcaster.start()

        self.sweeper = RetentionSweeper(store, self.config, interval=self.settings.CLEANUP_INTERVAL_SECONDS)
        self.sweeper.start()
        logger.info("Read receipts plugin activated")

    async def deactivate(self) -> None:
        logger.debug("Deactivating read receipts plugin...")
        if self.sweeper is not None:
            await self.sweeper.stop()
            self.sweeper = None
        await self.broadcaster.stop()
        await close_redis()
        if self._owns_engine and self.engine is not None:
            self.engine.dispose()
            self.engine = None
