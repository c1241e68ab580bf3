"""
Gateway configuration.

Values are resolved in three layers: model defaults, an optional JSON file
(``config/gateway.json`` under PROJECT_DIR, or the path in WAGATE_CONFIG),
and finally ``WAGATE_*`` environment variables.
"""

import json
import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from wagate.logger import get_logger

logger = get_logger(__name__)

PROJECT_DIR = Path(os.getenv("WAGATE_HOME", Path(__file__).resolve().parents[2]))
DATA_DIR = PROJECT_DIR / ".wagate"

ENV_PREFIX = "WAGATE_"


class GatewayConfig(BaseModel):
    """Runtime settings for the gateway process."""

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # One credential directory per token is created under here
    auth_dir: Path = Field(default_factory=lambda: DATA_DIR / "auth")

    artifact_timeout: float = 10.0
    shutdown_timeout: float = 10.0
    restore_on_startup: bool = True

    client_driver: str = "bridge"
    bridge_url: str = "http://127.0.0.1:3100"
    bridge_callback_url: str = "http://127.0.0.1:3000/bridge/events"
    bridge_timeout: float = 30.0

    media_timeout: float = 20.0
    media_max_bytes: int = 16 * 1024 * 1024

    api_keys: list[str] = Field(default_factory=list)

    @field_validator("api_keys", mode="before")
    @classmethod
    def _split_keys(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [k.strip() for k in value.split(",") if k.strip()]
        return value

    @field_validator("artifact_timeout", "shutdown_timeout", "media_timeout")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    @classmethod
    def load(cls, path: Optional[Path] = None, environ: Optional[dict] = None):
        """Build a config from the JSON file and environment overrides."""
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        if path is None:
            env_path = environ.get(f"{ENV_PREFIX}CONFIG")
            path = Path(env_path) if env_path else PROJECT_DIR / "config" / "gateway.json"

        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    values.update(json.load(f))
                logger.info(f"Loaded gateway config from {path}")
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to read config file {path}: {e}")

        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw

        return cls(**values)


class _ConfigHolder:
    """Module-level handle so callers can re-read configuration in place."""

    def __init__(self):
        self._config: Optional[GatewayConfig] = None

    @property
    def current(self) -> GatewayConfig:
        if self._config is None:
            self.reload()
        return self._config

    def reload(self) -> GatewayConfig:
        load_dotenv(PROJECT_DIR / ".env")
        try:
            self._config = GatewayConfig.load()
        except ValidationError as e:
            logger.error(f"Invalid gateway configuration, using defaults: {e}")
            self._config = GatewayConfig()
        return self._config

    def __getattr__(self, item):
        return getattr(self.current, item)


CONFIG = _ConfigHolder()
