"""
Engine Configuration
Environment-driven settings (EMS_* variables).

Usage:
    from config import get_settings

    settings = get_settings()
    settings.timezone      # "Asia/Kuala_Lumpur"
"""

from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """
    Env-driven config for the block/alert engine.

    Every field maps to EMS_<FIELD_NAME>, e.g. EMS_API_BASE_URL.
    """

    model_config = SettingsConfigDict(env_prefix="EMS_", case_sensitive=False)

    # EMS backend
    api_base_url: str = "http://localhost:8080"
    stream_base_url: Optional[str] = None   # defaults to api_base_url with ws scheme
    stream_enabled: bool = True
    api_key: Optional[str] = None
    request_timeout_sec: float = 10.0

    # WhatsApp gateway
    whatsapp_api_url: Optional[str] = None

    # Blocks
    timezone: str = "Asia/Kuala_Lumpur"
    debounce_ms: int = 500
    poll_interval_sec: float = 15.0

    # Alerts
    hysteresis_margin: float = 2.0
    message_template: str = "default"

    # Local store
    db_path: str = "data/notifications.db"

    @field_validator("api_base_url", "stream_base_url", "whatsapp_api_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/") if isinstance(v, str) else v

    @property
    def stream_url(self) -> str:
        """Base URL for the live websocket stream"""
        if self.stream_base_url:
            return self.stream_base_url
        base = self.api_base_url
        if base.startswith("https://"):
            return "wss://" + base[len("https://"):]
        if base.startswith("http://"):
            return "ws://" + base[len("http://"):]
        return base


@lru_cache
def get_settings() -> EngineSettings:
    return EngineSettings()
