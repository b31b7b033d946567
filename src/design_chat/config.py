"""
Configuration management for design-chat-stream

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DESIGN_CHAT_",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "design-chat-stream"
    debug: bool = False
    log_level: str = "INFO"

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/chat.db",
        description="Database connection URL for history snapshots"
    )
    persist_enabled: bool = Field(default=True, description="Write snapshots after every mutation")

    # Progress
    progress_interval_sec: float = Field(default=1.0, description="Progress ticker interval")
    progress_cap_pct: float = Field(default=95.0, description="Highest progress shown for an open tool")
    default_tool_duration_sec: float = Field(default=90.0, description="Estimate for unknown tools")
    tool_durations: dict[str, float] = Field(
        default_factory=dict,
        description="Extra or overriding tool duration estimates, keyed by tool name",
    )

    # Stream handling
    orphan_result_limit: int = Field(default=32, description="Tool results parked before their call")
    stopped_notice: str = Field(default="Response stopped by user.", description="Text of the stop notice")

    @field_validator("progress_interval_sec", "default_tool_duration_sec")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("progress_cap_pct")
    @classmethod
    def cap_below_done(cls, v: float) -> float:
        return max(0.0, min(v, 99.0))

    @property
    def is_sqlite(self) -> bool:
        """Check whether snapshots go to a local SQLite file."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
