from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    env: str = Field(default="development", alias="APP_ENV")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO", alias="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="json", alias="LOG_FORMAT")

    benchmark_enabled: bool = Field(default=True, alias="BENCHMARK_ENABLED")
    benchmark_logger: str = Field(default="benchmark", alias="BENCHMARK_LOGGER")

    cache_record_size: bool = Field(default=False, alias="CACHE_RECORD_SIZE")
    cache_log_operations: bool = Field(default=False, alias="CACHE_LOG_OPERATIONS")
    cache_label: str = Field(default="memcache", alias="CACHE_LABEL")

    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @property
    def dev_mode(self) -> bool:
        return self.env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
