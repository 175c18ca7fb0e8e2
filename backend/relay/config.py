"""Relay application configuration.

Loads settings from two YAML files:
  * relay.settings.yaml  : non-secret configuration
  * relay.secrets.yaml   : the shared chat secret and the MongoDB URI (never committed)

A handful of environment variables override the files so that the relay can
run from a plain ``.env``-style deployment:
  * CHAT_SECRET  → secrets.chat.secret
  * MONGODB_URI  → secrets.mongodb.uri (also switches store.backend to "mongodb")
  * PORT         → server.port
"""
from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("relay.settings.yaml")
SECRETS_FILE  = Path("relay.secrets.yaml")

DEFAULT_ALLOWED_EMOJIS = ["👍", "❤️", "😂", "😮", "😢", "🔥"]


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve_path(value: str, base_dir: Path) -> str:
    """Resolve *value* against *base_dir* unless it is absolute or special."""
    if not value or value == ":memory:":
        return value
    path = Path(value)
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class ChatSecrets(BaseModel):
    secret: str = "Linux"


class MongoSecrets(BaseModel):
    uri: Optional[str] = None


class Secrets(BaseModel):
    chat:    ChatSecrets  = Field(default_factory=ChatSecrets)
    mongodb: MongoSecrets = Field(default_factory=MongoSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class AccessMode(str, Enum):
    """How a socket becomes authorized.

    Attributes:
        OPEN: Every connection is authorized on connect.
        SHARED_SECRET: The socket sends ``auth`` with the shared secret.
        NAMED_JOIN: The socket sends ``join`` with a display name and the secret.
    """
    OPEN = "open"
    SHARED_SECRET = "shared_secret"
    NAMED_JOIN = "named_join"


class ServerSettings(BaseModel):
    host:      str  = "0.0.0.0"
    port:      int  = 3000
    reload:    bool = False
    log_level: str  = "info"


class ChatSettings(BaseModel):
    max_history:            int        = 100
    access_mode:            AccessMode = AccessMode.SHARED_SECRET
    denial_close_delay_ms:  int        = 300
    allowed_emojis:         List[str]  = Field(default_factory=lambda: list(DEFAULT_ALLOWED_EMOJIS))

    @field_validator("max_history")
    @classmethod
    def _positive_capacity(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_history must be at least 1")
        return value

    @field_validator("denial_close_delay_ms")
    @classmethod
    def _bounded_delay(cls, value: int) -> int:
        if value < 0 or value > 5000:
            raise ValueError("denial_close_delay_ms must be between 0 and 5000")
        return value


class StoreSettings(BaseModel):
    """Durable mirror of the bounded history."""
    backend:     Literal["memory", "mongodb", "duckdb"] = "memory"
    database:    str = "chat"
    collection:  str = "mensajes"
    duckdb_path: str = "chat_history.duckdb"


class UploadSettings(BaseModel):
    upload_dir:  str = "uploads"
    url_prefix:  str = "/uploads"
    max_bytes:   int = 5 * 1024 * 1024
    thumb_width: int = 320
    pixel_size:  int = 8


class LogoutSettings(BaseModel):
    cookie_names: List[str] = Field(
        default_factory=lambda: ["chat_key", "chat_autor", "session", "connect.sid", "io"]
    )
    paths: List[str] = Field(default_factory=lambda: ["/", "/chat", "/upload"])


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:   ServerSettings  = Field(default_factory=ServerSettings)
    chat:     ChatSettings    = Field(default_factory=ChatSettings)
    store:    StoreSettings   = Field(default_factory=StoreSettings)
    uploads:  UploadSettings  = Field(default_factory=UploadSettings)
    logout:   LogoutSettings  = Field(default_factory=LogoutSettings)
    logging:  LoggingSettings = Field(default_factory=LoggingSettings)
    secrets:  Secrets         = Field(default_factory=Secrets)

    @property
    def shared_secret(self) -> str:
        return self.secrets.chat.secret


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    """Let CHAT_SECRET, MONGODB_URI and PORT win over the YAML files."""
    secret = os.environ.get("CHAT_SECRET")
    if secret:
        config.secrets.chat.secret = secret
        logger.info("Shared chat secret taken from CHAT_SECRET.")

    mongodb_uri = os.environ.get("MONGODB_URI")
    if mongodb_uri:
        config.secrets.mongodb.uri = mongodb_uri
        config.store.backend = "mongodb"
        logger.info("MONGODB_URI set, durable store backend forced to mongodb.")

    port = os.environ.get("PORT")
    if port:
        try:
            config.server.port = int(port)
        except ValueError:
            logger.warning("Ignoring non-numeric PORT=%r", port)

    return config


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object.

    Relative file paths in the settings (upload dir, DuckDB file) resolve
    from the directory holding the settings file.
    """
    settings_path = Path(settings_path) if settings_path else SETTINGS_FILE
    if secrets_path is None:
        secrets_path = settings_path.with_name(SECRETS_FILE.name)

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(Path(secrets_path))

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = _apply_env_overrides(AppConfig(**settings_data))

    base_dir = settings_path.resolve().parent
    config.uploads.upload_dir = _resolve_path(config.uploads.upload_dir, base_dir)
    config.store.duckdb_path  = _resolve_path(config.store.duckdb_path, base_dir)

    logger.info(
        "Config loaded (server=%s:%s, access_mode=%s, max_history=%s, store=%s)",
        config.server.host,
        config.server.port,
        config.chat.access_mode.value,
        config.chat.max_history,
        config.store.backend,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached config (for testing)."""
    global _config
    _config = None
