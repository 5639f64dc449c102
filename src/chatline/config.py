"""
Runtime settings, read from ``CHATLINE_*`` environment variables.
"""

from __future__ import annotations

import os
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from chatline.errors import ChatlineError

ENV_PREFIX = "CHATLINE_"


class Settings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    db_path: str = "chatline.db"
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    auth_url: Optional[str] = None
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    socketio_path: str = "socket.io"
    ring_timeout: Optional[float] = Field(default=None, gt=0)
    log_level: str = "INFO"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("log_level")
    @classmethod
    def normalise_level(cls, value: str) -> str:
        return value.upper()

    def cors_allowed_origins(self) -> Any:
        """python-socketio wants the bare string ``"*"`` for any origin."""
        return "*" if self.cors_origins == ["*"] else self.cors_origins


def load_settings(env: Optional[Mapping[str, str]] = None, **overrides: Any) -> Settings:
    """Build Settings from the environment; non-None ``overrides`` win."""
    env = os.environ if env is None else env
    values: dict[str, Any] = {}
    for name in Settings.model_fields:
        raw = env.get(ENV_PREFIX + name.upper())
        if raw not in (None, ""):
            values[name] = raw
    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings.model_validate(values)
    except ValueError as e:
        raise ChatlineError("config_error", f"Invalid configuration: {e}")
