from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    database_url: str = Field("sqlite+aiosqlite:///./splitsmart.db", alias="DATABASE_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    sql_echo: bool = Field(False, alias="SQL_ECHO")

    # Payment confirmations are only delivered when both are set.
    telegram_bot_token: Optional[str] = Field(None, alias="TELEGRAM_BOT_TOKEN")
    notify_chat_id: Optional[int] = Field(None, alias="NOTIFY_CHAT_ID")


settings = Settings()
