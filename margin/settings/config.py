# margin/settings/config.py  (Pydantic v2)
from typing import Optional
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ---------- Local store ----------
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./margin.db",
        validation_alias=AliasChoices("DATABASE_URL", "MARGIN_DATABASE_URL"),
    )
    RUN_DB_CREATE_ALL: bool = Field(default=True, validation_alias=AliasChoices("RUN_DB_CREATE_ALL"))

    # ---------- Remote store (PostgREST-style backend) ----------
    REMOTE_URL: str = Field(
        default="http://localhost:54321",
        validation_alias=AliasChoices("REMOTE_URL", "SUPABASE_URL"),
    )
    REMOTE_API_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("REMOTE_API_KEY", "SUPABASE_ANON_KEY"),
    )
    # bearer token of the signed-in user; absent = signed out
    REMOTE_ACCESS_TOKEN: Optional[str] = Field(default=None, validation_alias=AliasChoices("REMOTE_ACCESS_TOKEN"))
    REMOTE_TIMEOUT_SECONDS: float = Field(default=15.0, validation_alias=AliasChoices("REMOTE_TIMEOUT_SECONDS"))

    # ---------- Sync ----------
    SYNC_MAX_BATCH_SIZE: int = Field(default=500, gt=0, validation_alias=AliasChoices("SYNC_MAX_BATCH_SIZE"))
    SYNC_MIN_INTERVAL_SECONDS: int = Field(default=60, validation_alias=AliasChoices("SYNC_MIN_INTERVAL_SECONDS"))
    # 0 disables the periodic job; foreground/manual triggers still work
    SYNC_INTERVAL_MINUTES: int = Field(default=0, validation_alias=AliasChoices("SYNC_INTERVAL_MINUTES"))
    APP_TZ: str = Field(default="UTC", validation_alias=AliasChoices("APP_TZ", "TZ"))

    # ---------- Fragments ----------
    # Overrides the packaged seed version as the catalogue reference version
    FRAGMENTS_CATALOG_VERSION: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("FRAGMENTS_CATALOG_VERSION"),
    )

    # ---------- pydantic-settings config ----------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # allow lower/upper env names
        extra="ignore",
    )


settings = Settings()
