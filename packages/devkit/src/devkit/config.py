from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    SERVICE_NAME: str = "service"
    LOG_LEVEL: str = "INFO"
    DATABASE_URL: str | None = None
    POSTGIS_ENABLED: bool = False
    DEFAULT_SEARCH_RADIUS_METERS: float = 10_000.0
    MAX_SEARCH_RADIUS_KM: float = 100.0


def load_settings(service_name: str) -> ServiceSettings:
    return ServiceSettings(SERVICE_NAME=service_name)
