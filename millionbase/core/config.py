"""Configuration management for MillionBase."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CAPACITY = 1_000_000


class RegistrySettings(BaseSettings):
    """Registry store and service settings."""

    db_path: Path = Field(default=Path("data/registry.db"), alias="REGISTRY_DB_PATH")
    capacity: int = Field(default=DEFAULT_CAPACITY, ge=1, alias="REGISTRY_CAPACITY")
    # Comma separated operator ids allowed to issue assisted claims
    operators: str = Field(default="", alias="REGISTRY_OPERATORS")
    busy_timeout: float = Field(default=30.0, alias="REGISTRY_BUSY_TIMEOUT")
    event_queue_size: int = Field(default=1000, ge=1, alias="REGISTRY_EVENT_QUEUE_SIZE")
    host: str = Field(default="127.0.0.1", alias="REGISTRY_HOST")
    port: int = Field(default=8600, alias="REGISTRY_PORT")

    @property
    def operator_ids(self) -> list[str]:
        """Parsed operator allow-list."""
        return [op.strip() for op in self.operators.split(",") if op.strip()]


class ClientSettings(BaseSettings):
    """Client session settings."""

    registry_url: str = Field(default="http://127.0.0.1:8600", alias="REGISTRY_URL")
    timeout: float = Field(default=10.0, alias="CLIENT_TIMEOUT")
    max_concurrent_lookups: int = Field(default=32, ge=1, alias="MAX_CONCURRENT_LOOKUPS")
    # 0 means a cell seen unclaimed may be looked up again on the very next access
    unclaimed_recheck_seconds: float = Field(default=5.0, ge=0.0, alias="UNCLAIMED_RECHECK_SECONDS")
    unclaimed_memory_size: int = Field(default=10_000, ge=1, alias="UNCLAIMED_MEMORY_SIZE")
    follow_events: bool = Field(default=True, alias="FOLLOW_EVENTS")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_to_file: bool = Field(default=True, alias="LOG_TO_FILE")
    log_dir: Path = Field(default=Path("logs/millionbase"), alias="LOG_DIR")
    log_max_bytes: int = Field(default=10 * 1024 * 1024, ge=1, alias="LOG_MAX_BYTES")
    log_backup_count: int = Field(default=5, ge=0, alias="LOG_BACKUP_COUNT")

    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    client: ClientSettings = Field(default_factory=ClientSettings)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
