# filevault/core/config.py
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

GIB = 1024 * 1024 * 1024


class Settings(BaseSettings):
    database_url: str = "sqlite:///./storage/filevault.db"
    upload_dir: Path = Path("public") / "uploads"

    # Upload ceilings
    max_file_size: int = Field(default=GIB, gt=0)
    max_single_files: int = Field(default=1, ge=0)   # "file" field
    max_multi_files: int = Field(default=10, ge=0)   # "files" field

    # Edge
    rate_limit: str = "100/15 minutes"
    rate_limit_enabled: bool = True
    cors_max_age: int = 3600

    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 4006

    # Tell pydantic-settings to load from .env at project root
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # ignore any extra stuff in .env
    )

    @property
    def max_files_per_request(self) -> int:
        return self.max_single_files + self.max_multi_files

    @property
    def max_request_size(self) -> int:
        # every file at the ceiling plus room for multipart boundaries/headers
        return self.max_file_size * self.max_files_per_request + 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()
