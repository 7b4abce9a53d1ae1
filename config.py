"""
Application settings.

Loaded once from the environment (and an optional .env file) when the app is
created, then handed to the services that need them.
"""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    secret_key: str = Field(default="super-secret-key-change", validation_alias="JWT_SECRET")
    database_url: str = Field(default="mongodb://localhost:27017", validation_alias="DATABASE_URL")
    database_name: str = Field(default="personal_finance", validation_alias="DATABASE_NAME")
    upload_dir: str = Field(default="uploads", validation_alias="UPLOAD_DIR")
    port: int = Field(default=5000, validation_alias="PORT")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")
    cors_origins: List[str] = Field(default=["*"], validation_alias="CORS_ORIGINS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
