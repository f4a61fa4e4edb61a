# bus_tracker/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины — config/config.json.
Секретные данные переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации (переопределяется BUS_TRACKER_CONFIG)."""
    override = os.getenv("BUS_TRACKER_CONFIG")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


def _env_bool(name: str, default: bool) -> bool:
    """Читает булев флаг из окружения."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "bus_tracker"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "location_relay"


class DeploymentSettings(BaseModel):
    """Адреса компонентов."""
    LOCATION_RELAY_HOST: str = "0.0.0.0"
    LOCATION_RELAY_PORT: int = 5000
    LOCATION_RELAY_URL: str = "http://localhost:5000"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        """Допустимы только json и colored."""
        if v not in ("json", "colored"):
            raise ValueError(f"Неизвестный формат логов: {v}")
        return v


class MQTTSettings(BaseModel):
    """Настройки MQTT брокера (HiveMQ Cloud или любой MQTT 3.1.1 брокер)."""
    MQTT_HOST: str = "localhost"
    MQTT_PORT: int = 8883
    MQTT_USE_TLS: bool = True
    MQTT_CA_CERTS: str | None = None
    MQTT_USERNAME: str = Field(default="", validate_default=True)
    MQTT_PASSWORD: str = Field(default="", validate_default=True)
    MQTT_CLIENT_ID_PREFIX: str = "BusTrackerServer"
    MQTT_RECONNECT_INTERVAL: float = Field(default=1.0, gt=0)
    MQTT_KEEPALIVE: int = Field(default=60, gt=0)
    MQTT_CONNECT_TIMEOUT: float = Field(default=10.0, gt=0)
    MQTT_PUBLISH_TIMEOUT: float = Field(default=5.0, gt=0)
    MQTT_MAX_QUEUED_MESSAGES: int = Field(default=1000, ge=1)
    MQTT_QOS: int = Field(default=1, ge=0, le=2)
    MQTT_LOCATION_TOPIC_PREFIX: str = "bus/location"
    MQTT_OBSERVER_TOPIC: str = "bus/#"

    @field_validator("MQTT_USERNAME", "MQTT_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str | None, info) -> str:
        """Берёт учётные данные из окружения, если они не заданы."""
        if not v:
            return os.getenv(info.field_name, "")
        return v

    @field_validator("MQTT_LOCATION_TOPIC_PREFIX")
    @classmethod
    def strip_prefix(cls, v: str) -> str:
        """Префикс хранится без завершающего слэша."""
        return v.rstrip("/")


class RelaySettings(BaseModel):
    """Настройки ретрансляции геолокации."""
    RELAY_PUBLISH_ATTEMPTS: int = Field(default=2, ge=1)
    RELAY_RETRY_BACKOFF: float = Field(default=0.2, ge=0)
    RELAY_MAX_TRACKED_DRIVERS: int = Field(default=10000, ge=1)


class AuthSettings(BaseModel):
    """Настройки проверки токена водителя."""
    AUTH_JWT_SECRET: str = Field(default="", validate_default=True)
    AUTH_JWT_ALGORITHM: str = "HS256"
    AUTH_REQUIRE_DRIVER_TOKEN: bool = False
    AUTH_TOKEN_TTL_DAYS: int = 7

    @field_validator("AUTH_JWT_SECRET", mode="before")
    @classmethod
    def get_from_env(cls, v: str | None) -> str:
        """Секрет JWT берётся из JWT_SECRET, если не задан."""
        if not v:
            return os.getenv("JWT_SECRET", "")
        return v

    @model_validator(mode="after")
    def check_secret(self) -> "AuthSettings":
        """Обязательная проверка токена без секрета невозможна."""
        if self.AUTH_REQUIRE_DRIVER_TOKEN and not self.AUTH_JWT_SECRET:
            raise ValueError("AUTH_REQUIRE_DRIVER_TOKEN включён, но JWT_SECRET не задан")
        return self


class TrackerSettings(BaseModel):
    """Настройки трекера на стороне водителя."""
    TRACKER_REQUEST_TIMEOUT: float = Field(default=10.0, gt=0)
    TRACKER_MAX_ATTEMPTS: int = Field(default=5, ge=1)
    TRACKER_INITIAL_BACKOFF: float = Field(default=1.0, gt=0)
    TRACKER_MAX_BACKOFF: float = Field(default=30.0, gt=0)
    TRACKER_REPLAY_INTERVAL: float = Field(default=3.0, gt=0)
    TRACKER_REPLAY_LOOP: bool = True
    TRACKER_DRIVER_ID: str = "demo-driver"
    TRACKER_DRIVER_TOKEN: str = Field(default="", validate_default=True)

    @field_validator("TRACKER_DRIVER_TOKEN", mode="before")
    @classmethod
    def get_from_env(cls, v: str | None) -> str:
        """Токен симулятора берётся из DRIVER_TOKEN, если не задан."""
        if not v:
            return os.getenv("DRIVER_TOKEN", "")
        return v


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    mqtt: MQTTSettings = Field(default_factory=MQTTSettings)
    relay: RelaySettings = Field(default_factory=RelaySettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """
        Раскладывает плоский словарь config.json по секциям.
        Значения из окружения имеют приоритет над файлом.
        """
        def section(model: type[BaseModel]) -> dict[str, Any]:
            return {name: data[name] for name in model.model_fields if name in data}

        mqtt = section(MQTTSettings)
        mqtt["MQTT_HOST"] = os.getenv("MQTT_HOST", mqtt.get("MQTT_HOST", "localhost"))
        mqtt["MQTT_PORT"] = int(os.getenv("MQTT_PORT", mqtt.get("MQTT_PORT", 8883)))
        mqtt["MQTT_USE_TLS"] = _env_bool("MQTT_USE_TLS", mqtt.get("MQTT_USE_TLS", True))
        mqtt["MQTT_USERNAME"] = os.getenv("MQTT_USERNAME", mqtt.get("MQTT_USERNAME", ""))
        mqtt["MQTT_PASSWORD"] = os.getenv("MQTT_PASSWORD", mqtt.get("MQTT_PASSWORD", ""))

        auth = section(AuthSettings)
        auth["AUTH_JWT_SECRET"] = os.getenv("JWT_SECRET", auth.get("AUTH_JWT_SECRET", ""))
        auth["AUTH_REQUIRE_DRIVER_TOKEN"] = _env_bool(
            "AUTH_REQUIRE_DRIVER_TOKEN", auth.get("AUTH_REQUIRE_DRIVER_TOKEN", False)
        )

        system = section(SystemSettings)
        system["COMPONENT_MODE"] = os.getenv("COMPONENT_MODE", system.get("COMPONENT_MODE", "location_relay"))

        deployment = section(DeploymentSettings)
        deployment["LOCATION_RELAY_URL"] = os.getenv(
            "LOCATION_RELAY_URL", deployment.get("LOCATION_RELAY_URL", "http://localhost:5000")
        )

        tracker = section(TrackerSettings)
        tracker["TRACKER_DRIVER_ID"] = os.getenv("DRIVER_ID", tracker.get("TRACKER_DRIVER_ID", "demo-driver"))

        return cls(
            system=SystemSettings(**system),
            deployment=DeploymentSettings(**deployment),
            logging=LoggingSettings(**section(LoggingSettings)),
            mqtt=MQTTSettings(**mqtt),
            relay=RelaySettings(**section(RelaySettings)),
            auth=AuthSettings(**auth),
            tracker=TrackerSettings(**tracker),
        )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """Создаёт Settings из config.json с переопределением секретов из окружения."""
        return cls.from_dict(load_config_json())


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Перед чтением конфигурации подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


settings = get_settings()
