from functools import lru_cache
from typing import List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(default="Salon Front Desk")
    cors_origins: List[AnyHttpUrl] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )
    backend_base_url: AnyHttpUrl | None = Field(
        default=None
    )
    backend_ws_url: str | None = Field(
        default=None
    )
    backend_timeout: float = Field(
        default=10.0
    )
    backend_token: str | None = Field(
        default=None
    )
    use_mock_data: bool = Field(
        default=True
    )
    salon_id: int = Field(
        default=1001
    )
    branch_id: int | None = Field(
        default=None
    )
    actor_role: str = Field(
        default="RECEPTION"
    )
    timezone: str = Field(
        default="Asia/Colombo"
    )

    default_page_size: int = Field(default=9, ge=1)
    statistics_page_size: int = Field(default=200, ge=1)

    grid_open: str = Field(default="09:00")
    grid_close: str = Field(default="18:00")
    slot_granularity_minutes: int = Field(default=30, ge=1)

    refetch_timeout: float = Field(default=10.0)
    mutation_timeout: float = Field(default=10.0)

    channel_auto_reconnect: bool = Field(default=True)
    channel_backoff_base: float = Field(default=1.0)
    channel_backoff_cap: float = Field(default=30.0)
    channel_max_reconnect_attempts: int = Field(default=5, ge=0)
    channel_heartbeat: float = Field(default=30.0)

    model_config = SettingsConfigDict(env_prefix="FRONTDESK_", case_sensitive=False)

    @field_validator("cors_origins", mode="before")
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("grid_open", "grid_close")
    def _check_clock(cls, value: str) -> str:
        hours, _, minutes = value.partition(":")
        if not (hours.isdigit() and minutes.isdigit()):
            raise ValueError("grid times must use HH:MM")
        return value

    def websocket_url(self) -> str | None:
        if self.backend_ws_url:
            return f"{self.backend_ws_url.rstrip('/')}/appointments/{self.salon_id}"
        return None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
