from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

load_dotenv()


class Settings(BaseModel):
    FEED_TIMEOUT_MS: int = Field(default=10_000, description="validation timeout")
    FEED_REFRESH_MS: int = Field(default=60_000, description="production poll interval")
    FEED_USER_AGENT: Optional[str] = Field(default=None)
    FETCH_TIMEOUT_SECONDS: float = Field(default=15.0)
    POLL_JITTER_SECONDS: int = Field(default=0)
    POLL_BACKOFF_MAX_SECONDS: int = Field(default=600)
    CACHE_DB_PATH: str = Field(default="feedrelay.db")
    API_TOKEN: str = Field(default="dev_token")  # simple bearer for writes
    API_KEYS: str = Field(default="", description="comma-separated API keys")
    CORS_ALLOW_ORIGINS: str = Field(default="*")
    LOG_LEVEL: str = Field(default="INFO")
    RESTORE_ON_START: bool = Field(default=True)
    OUTBOX_ENABLED: bool = Field(default=True)
    BROADCAST_WEBHOOK_URL: Optional[str] = Field(default=None)


def _load_settings(existing: Settings | None = None) -> Settings:
    values: dict[str, Any] = {}
    for name, field in Settings.model_fields.items():
        env_value = os.getenv(name)
        if env_value is None:
            if existing is not None and hasattr(existing, name):
                values[name] = getattr(existing, name)
                continue
            values[name] = field.get_default(call_default_factory=True)
        else:
            values[name] = env_value

    try:
        return Settings(**values)
    except ValidationError as exc:
        invalid = sorted({str(error["loc"][0]) for error in exc.errors() if error.get("loc")})
        raise RuntimeError(
            f"Invalid environment variables: {', '.join(invalid)}"
        ) from exc


settings = _load_settings()


def reload_settings() -> Settings:
    global settings
    fresh = _load_settings(settings)
    settings.__dict__.update(fresh.__dict__)
    return settings
