# bus_tracker/shared/models/location.py
"""
Модели геолокации водителя: запрос эндпоинта, фикс и полезная нагрузка MQTT.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def format_timestamp(moment: datetime) -> str:
    """ISO8601 в UTC с миллисекундами и суффиксом Z (как toISOString в браузере)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PublishLocationRequest(BaseModel):
    """
    Тело POST /api/driver/publish-location.

    Все поля необязательны на уровне схемы: наличие проверяет сервис,
    чтобы ответ на неполный запрос был 400 с понятным сообщением.
    """
    model_config = ConfigDict(populate_by_name=True)

    driver_id: str | int | None = Field(default=None, alias="driverId")
    latitude: float | None = None
    longitude: float | None = None


class PublishLocationResponse(BaseModel):
    """Успешный ответ эндпоинта."""
    status: str
    topic: str


class LocationPayload(BaseModel):
    """Полезная нагрузка сообщения в топике bus/location/{driverId}."""
    lat: float
    lng: float
    timestamp: str


class LocationFix(BaseModel):
    """
    Одно показание GPS водителя.

    Создаётся на каждый принятый запрос, публикуется один раз и не хранится.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    driver_id: str = Field(alias="driverId")
    latitude: float
    longitude: float
    timestamp: str

    def to_payload(self) -> LocationPayload:
        """Формат сообщения для брокера."""
        return LocationPayload(lat=self.latitude, lng=self.longitude, timestamp=self.timestamp)


class RelayStats(BaseModel):
    """Счётчики ретранслятора."""
    total_published: int
    total_failed: int
    # Водители среди недавно активных (не больше RELAY_MAX_TRACKED_DRIVERS)
    unique_drivers: int
    observed_messages: int
