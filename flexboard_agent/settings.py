from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEV_CONTROL_PLANE_URL = "http://localhost:3000"
_DEV_API_KEY = "fxb_demo_key"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # =========================
    # Environment
    # =========================
    environment: Literal["development", "test", "staging", "production"] = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    # =========================
    # Control plane sync
    # =========================
    control_plane_url: str | None = None
    flexboard_api_key: str | None = None
    agent_version: str = "2.0.0-multi-connector"
    sync_interval: int = 300_000
    sync_timeout_seconds: float = 10.0
    sync_enabled: bool = True
    config_file_path: str = "config.json"

    # =========================
    # Widget result cache
    # =========================
    enable_caching: bool = True
    cache_ttl: int = 300
    cache_max_entries: int = 500

    # =========================
    # Connectors
    # =========================
    sql_server_connection_string: str | None = None
    sql_server_request_timeout: int = 30

    postgresql_connection_string: str | None = None
    postgresql_ssl: bool = False

    mysql_connection_string: str | None = None
    mysql_ssl: bool = False

    api_base_url: str | None = None
    api_key: str | None = None
    api_timeout: int = 30_000
    api_health_timeout: int = 5_000

    firestore_project_id: str | None = None
    firestore_credentials_path: str | None = None

    query_timeout_seconds: int = 30

    @property
    def sync_interval_seconds(self) -> float:
        return max(1, self.sync_interval) / 1000

    @model_validator(mode="after")
    def validate_control_plane(self) -> "Settings":
        if self.is_production:
            if not self.control_plane_url:
                raise ValueError("CONTROL_PLANE_URL environment variable is required in production")
            if not self.flexboard_api_key:
                raise ValueError("FLEXBOARD_API_KEY environment variable is required in production")
            return self

        if not self.control_plane_url:
            self.control_plane_url = _DEV_CONTROL_PLANE_URL
        if not self.flexboard_api_key:
            self.flexboard_api_key = _DEV_API_KEY
        return self


@lru_cache()
def get_settings() -> Settings:
    return Settings()
