# audit_stream/config/settings.py

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_name: str = "audit-stream"
    environment: Literal["dev", "test", "prod"] = "dev"
    debug: bool = False
    version: str = "0.1.0"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # --- Store (optional; operators normally configure via POST /agent/connect) ---
    store_backend: Literal["postgres", "memory"] = "postgres"
    store_host: Optional[str] = None
    store_port: int = 5432
    store_database: Optional[str] = None
    store_user: Optional[str] = None
    store_password: Optional[str] = None

    # --- Change capture ---
    notification_channel: str = "audit_channel"
    actor_setting: str = "app.current_user_name"
    watched_entities: List[str] = Field(default_factory=lambda: ["User", "Course"])

    # --- Dispatch / detection ---
    dedup_capacity: int = Field(100, ge=1)
    dedup_horizon_seconds: float = Field(60.0, gt=0)
    rapid_delete_window_ms: int = Field(1000, ge=0)
    activity_window_capacity: int = Field(10_000, ge=1)

    # --- Query caps ---
    recent_audit_limit: int = Field(100, ge=1)
    recent_alert_limit: int = Field(50, ge=1)

    # --- Messaging ---
    rabbitmq_url: Optional[str] = None
    rabbitmq_exchange: str = "audit_stream"

    # --- Observability ---
    enable_metrics: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @property
    def has_initial_store(self) -> bool:
        return bool(self.store_host and self.store_database and self.store_user)


@lru_cache
def get_settings() -> AppSettings:
    return AppSettings()


# Singleton for direct import (e.g. in infrastructure clients)
settings = get_settings()
