from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # ──────────────────────────────────────────────────────────────
    # Incident feed
    # ──────────────────────────────────────────────────────────────

    feed_url: str = Field(
        default="http://www.freiefahrt.info/lmst.de_DE.xml",
        alias="FEED_URL",
    )
    feed_timeout_s: float = Field(default=15.0, alias="FEED_TIMEOUT_S")
    feed_retries: int = Field(default=1, alias="FEED_RETRIES")

    # ──────────────────────────────────────────────────────────────
    # Sign images
    # ──────────────────────────────────────────────────────────────

    image_timeout_s: float = Field(default=10.0, alias="IMAGE_TIMEOUT_S")
    image_max_concurrency: int = Field(default=6, alias="IMAGE_MAX_CONCURRENCY")

    # ──────────────────────────────────────────────────────────────
    # Sorting + location
    # ──────────────────────────────────────────────────────────────

    default_sorting: Literal["date", "location"] = Field(default="location", alias="DEFAULT_SORTING")

    location_enabled: bool = Field(default=True, alias="LOCATION_ENABLED")
    location_lat: float | None = Field(default=None, alias="LOCATION_LAT")
    location_lng: float | None = Field(default=None, alias="LOCATION_LNG")
    location_timeout_s: float = Field(default=10.0, alias="LOCATION_TIMEOUT_S")

    # ──────────────────────────────────────────────────────────────
    # Service
    # ──────────────────────────────────────────────────────────────

    http_user_agent: str = Field(default="trafficwatch/1.0", alias="HTTP_USER_AGENT")
    event_log_size: int = Field(default=200, alias="EVENT_LOG_SIZE")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    autoload_on_startup: bool = Field(default=True, alias="AUTOLOAD_ON_STARTUP")


settings = Settings()
