"""Configuration loader for Rangewatch."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel
from pydantic_settings import BaseSettings

from .models.operation import PollingOptions


class LudusConfig(BaseModel):
    url: str = ""
    admin_url: str = ""
    api_key: str = ""
    verify_ssl: bool = False  # Ludus ships with a self-signed certificate
    timeout: float = 30.0


class PollingConfig(BaseModel):
    ranges: int = 300  # 5 minutes - range list changes slowly
    templates_status: int = 10  # build status changes quickly


class AppConfig(BaseModel):
    ludus: LudusConfig = LudusConfig()
    polling: PollingConfig = PollingConfig()
    tracking: PollingOptions = PollingOptions(interval_ms=5000)


class Settings(BaseSettings):
    """Environment-based settings."""

    redis_url: str = "redis://localhost:6379"
    dev_mode: bool = True
    config_path: str = "../config/config.yaml"

    # Override the YAML values, same names the Ludus CLI uses
    ludus_api_base_url: str = ""
    ludus_api_base_url_admin: str = ""
    ludus_api_key: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def load_yaml_config(path: str) -> dict[str, Any]:
    """Load a YAML configuration file."""
    config_path = Path(path)
    if not config_path.is_absolute():
        config_path = Path(__file__).parent.parent / path

    if not config_path.exists():
        return {}

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def get_config() -> AppConfig:
    """Load and return the application configuration."""
    settings = Settings()
    config = AppConfig(**load_yaml_config(settings.config_path))

    if settings.ludus_api_base_url:
        config.ludus.url = settings.ludus_api_base_url
    if settings.ludus_api_base_url_admin:
        config.ludus.admin_url = settings.ludus_api_base_url_admin
    if settings.ludus_api_key:
        config.ludus.api_key = settings.ludus_api_key

    return config


# Singleton instance
settings = Settings()


class IntegrationSettings:
    """Convenience class for API clients to access config."""

    def __init__(self):
        self._config = get_config()

    @property
    def ludus_url(self) -> str:
        return self._config.ludus.url

    @property
    def ludus_admin_url(self) -> str:
        # Admin endpoints live on a separate port; fall back to the user URL
        return self._config.ludus.admin_url or self._config.ludus.url

    @property
    def ludus_api_key(self) -> str:
        return self._config.ludus.api_key

    @property
    def ludus_verify_ssl(self) -> bool:
        return self._config.ludus.verify_ssl

    @property
    def ludus_timeout(self) -> float:
        return self._config.ludus.timeout


def get_settings() -> IntegrationSettings:
    """Get integration settings for API clients."""
    return IntegrationSettings()
