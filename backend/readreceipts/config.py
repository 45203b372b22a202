import logging
import threading
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

VALID_LOG_LEVELS = ("debug", "info", "error")

_LOGGING_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "error": logging.ERROR,
}


class Settings(BaseSettings):
    # Host database. Left empty (or masked with "*") when the host does not
    # expose its own DSN; READRECEIPTS_DSN is used instead.
    DATABASE_URL: str = ""
    READRECEIPTS_DSN: str = ""

    # Mattermost REST API, used for post and channel lookups
    MATTERMOST_URL: str = "http://localhost:8065"
    MATTERMOST_TOKEN: str = ""
    MATTERMOST_TIMEOUT: float = 5.0

    # Redis pub/sub fan-out across processes.
    # Set to empty string to disable Redis (events are delivered in-process only)
    REDIS_URL: str = ""

    LOG_LEVEL: str = "INFO"

    # Shared secret the host sends when pushing a configuration change.
    # Empty disables PUT /api/v1/config.
    CONFIG_PUSH_TOKEN: str = ""

    CLEANUP_INTERVAL_SECONDS: int = 86_400  # once per day

    # Initial plugin configuration, replaced at runtime by the host
    PLUGIN_ENABLE: bool = True
    PLUGIN_VISIBILITY_THRESHOLD_MS: int = 2000
    PLUGIN_RETENTION_DAYS: int = 30
    PLUGIN_LOG_LEVEL: str = "info"

    model_config = {"env_file": ".env"}

    def plugin_defaults(self) -> dict[str, Any]:
        return {
            "enable": self.PLUGIN_ENABLE,
            "visibility_threshold_ms": self.PLUGIN_VISIBILITY_THRESHOLD_MS,
            "retention_days": self.PLUGIN_RETENTION_DAYS,
            "log_level": self.PLUGIN_LOG_LEVEL,
        }


def resolve_database_url(settings: Settings) -> str:
    """Return the connection URL, falling back to READRECEIPTS_DSN.

    A DATABASE_URL containing ``*`` is treated as masked by the host and
    ignored.
    """
    url = settings.DATABASE_URL
    if url and "*" not in url:
        return url
    if settings.READRECEIPTS_DSN:
        return settings.READRECEIPTS_DSN
    raise RuntimeError("could not determine database connection string")


class PluginConfiguration(BaseModel):
    """Tunables exposed through the System Console."""

    enable: bool = True
    # Milliseconds a post must be visible before it counts as "read"
    visibility_threshold_ms: int = Field(2000, ge=0)
    # Purge receipts older than N days (0 disables the sweep)
    retention_days: int = Field(30, ge=0)
    log_level: str = "info"

    model_config = {"frozen": True}

    @field_validator("log_level", mode="before")
    @classmethod
    def normalise_log_level(cls, value: Any) -> str:
        level = str(value or "info").strip().lower()
        if level not in VALID_LOG_LEVELS:
            raise ValueError("log level must be one of: debug, info, error")
        return level

    @property
    def logging_level(self) -> int:
        return _LOGGING_LEVELS[self.log_level]


class ConfigurationHolder:
    """Owns the active configuration snapshot.

    Snapshots are immutable; ``replace`` validates the new values first and
    swaps the reference under the lock, so readers always observe either the
    old or the new snapshot in full.
    """

    def __init__(self, initial: PluginConfiguration | None = None) -> None:
        self._lock = threading.Lock()
        self._current = initial or PluginConfiguration()

    def get(self) -> PluginConfiguration:
        with self._lock:
            return self._current

    def replace(self, raw: Mapping[str, Any]) -> PluginConfiguration:
        """Validate *raw* and make it the active snapshot.

        Raises pydantic's ``ValidationError`` (a ``ValueError``) and keeps the
        previous snapshot if *raw* is invalid.
        """
        new = PluginConfiguration.model_validate(dict(raw))
        with self._lock:
            self._current = new
        logging.getLogger("readreceipts").setLevel(new.logging_level)
        return new


settings = Settings()
