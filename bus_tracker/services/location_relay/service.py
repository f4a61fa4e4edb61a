# bus_tracker/services/location_relay/service.py
"""
Бизнес-логика ретрансляции геолокации водителей в MQTT.
"""

from __future__ import annotations

import asyncio
import math
from collections import OrderedDict
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from bus_tracker.common.constants import (
    MSG_INVALID_DRIVER_ID,
    MSG_INVALID_LOCATION,
    MSG_PUBLISH_OK,
    TOPIC_FORBIDDEN_CHARS,
    TypeMsg,
)
from bus_tracker.common.logger import log_error, log_info, log_warning
from bus_tracker.shared.errors import LocationValidationError, RelayError, RelayTimeout
from bus_tracker.shared.models.location import (
    LocationFix,
    PublishLocationRequest,
    PublishLocationResponse,
    RelayStats,
    format_timestamp,
)

if TYPE_CHECKING:
    from bus_tracker.config.loader import Settings
    from bus_tracker.infra.mqtt_client import BrokerConnection


def validate_location_request(body: PublishLocationRequest) -> tuple[str, float, float]:
    """
    Проверяет тело запроса публикации.

    Координата 0 допустима: отсутствием считается только None.

    Returns:
        (driver_id, latitude, longitude)

    Raises:
        LocationValidationError: поле отсутствует, координаты вне диапазона
            или driverId содержит символы MQTT-топика
    """
    driver_id = None if body.driver_id is None else str(body.driver_id).strip()
    if not driver_id or body.latitude is None or body.longitude is None:
        raise LocationValidationError()

    latitude, longitude = body.latitude, body.longitude
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise LocationValidationError(MSG_INVALID_LOCATION)
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        raise LocationValidationError(MSG_INVALID_LOCATION)

    if any(ch in TOPIC_FORBIDDEN_CHARS for ch in driver_id):
        raise LocationValidationError(MSG_INVALID_DRIVER_ID)

    return driver_id, latitude, longitude


class LocationRelayService:
    """
    Сервис ретрансляции геолокации.

    Ответственности:
    - Серверная метка времени, неубывающая для каждого водителя
    - Публикация в bus/location/{driverId} с ограниченным числом попыток
    - Наблюдение за bus/# (логирование входящих сообщений)
    - Статистика
    """

    def __init__(
        self,
        broker: "BrokerConnection",
        *,
        topic_prefix: str = "bus/location",
        qos: int = 1,
        publish_attempts: int = 2,
        retry_backoff: float = 0.2,
        max_tracked_drivers: int = 10000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._broker = broker
        self._topic_prefix = topic_prefix.rstrip("/")
        self._qos = qos
        self._publish_attempts = max(1, publish_attempts)
        self._retry_backoff = retry_backoff
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        # Последняя выданная метка по недавно активным водителям (LRU)
        self._last_timestamps: OrderedDict[str, datetime] = OrderedDict()
        self._max_tracked_drivers = max(1, max_tracked_drivers)
        # Максимальная метка среди вытесненных водителей
        self._evicted_watermark: datetime | None = None

        # Статистика
        self._total_published = 0
        self._total_failed = 0
        self._observed_messages = 0

    @classmethod
    def from_settings(cls, broker: "BrokerConnection", settings: "Settings") -> LocationRelayService:
        """Создаёт сервис из настроек mqtt и relay."""
        return cls(
            broker,
            topic_prefix=settings.mqtt.MQTT_LOCATION_TOPIC_PREFIX,
            qos=settings.mqtt.MQTT_QOS,
            publish_attempts=settings.relay.RELAY_PUBLISH_ATTEMPTS,
            retry_backoff=settings.relay.RELAY_RETRY_BACKOFF,
            max_tracked_drivers=settings.relay.RELAY_MAX_TRACKED_DRIVERS,
        )

    def topic_for(self, driver_id: str) -> str:
        """Топик геолокации водителя."""
        return f"{self._topic_prefix}/{driver_id}"

    def next_timestamp(self, driver_id: str) -> str:
        """
        Метка времени для нового фикса водителя.

        Если часы сервера ушли назад, повторяется последняя выданная метка.
        Хранятся метки не более max_tracked_drivers водителей; для вытесненных
        нижней границей служит максимальная вытесненная метка.
        """
        now = self._clock()
        last = self._last_timestamps.pop(driver_id, None)
        if last is None:
            last = self._evicted_watermark
        if last is not None and now < last:
            now = last
        self._last_timestamps[driver_id] = now

        while len(self._last_timestamps) > self._max_tracked_drivers:
            _, evicted = self._last_timestamps.popitem(last=False)
            if self._evicted_watermark is None or evicted > self._evicted_watermark:
                self._evicted_watermark = evicted
        return format_timestamp(now)

    async def publish_location(
        self,
        driver_id: str,
        latitude: float,
        longitude: float,
    ) -> PublishLocationResponse:
        """
        Публикует одно показание GPS.

        Args:
            driver_id: Проверенный идентификатор водителя
            latitude: Широта
            longitude: Долгота

        Raises:
            RelayError: брокер недоступен после всех попыток
            RelayTimeout: брокер не подтвердил публикацию вовремя
        """
        fix = LocationFix(
            driver_id=driver_id,
            latitude=latitude,
            longitude=longitude,
            timestamp=self.next_timestamp(driver_id),
        )
        topic = self.topic_for(driver_id)

        await self._publish_with_retry(topic, fix)

        self._total_published += 1
        await log_info(
            f"Геолокация водителя {driver_id} опубликована в {topic}",
            type_msg=TypeMsg.DEBUG,
            extra={"topic": topic, "driver_id": driver_id},
        )
        return PublishLocationResponse(status=MSG_PUBLISH_OK, topic=topic)

    async def _publish_with_retry(self, topic: str, fix: LocationFix) -> None:
        payload = fix.to_payload().model_dump()
        extra: dict[str, Any] = {"topic": topic, "driver_id": fix.driver_id}

        for attempt in range(1, self._publish_attempts + 1):
            try:
                await self._broker.publish(topic, payload, qos=self._qos)
                return
            except RelayTimeout as e:
                # Сообщение остаётся в очереди paho и может быть доставлено: повтор дал бы дубль
                await self._report_failure(topic, e, extra)
                raise
            except RelayError as e:
                if attempt >= self._publish_attempts:
                    await self._report_failure(topic, e, extra)
                    raise
                await log_warning(
                    f"Публикация в {topic} не удалась (попытка {attempt}/{self._publish_attempts}): "
                    f"{e.detail or e.message}",
                    extra=extra,
                )
                await asyncio.sleep(self._retry_backoff)

    async def _report_failure(self, topic: str, error: RelayError, extra: dict[str, Any]) -> None:
        self._total_failed += 1
        await log_error(
            f"Ошибка публикации геолокации в {topic}: {error.detail or error.message}",
            extra={**extra, "broker_error": error.detail},
        )

    async def observe_message(self, topic: str, payload: str) -> None:
        """Обработчик наблюдателя bus/#: логирует каждое сообщение брокера."""
        self._observed_messages += 1
        await log_info(f"[MQTT] Received on {topic}: {payload}", logger_name="mqtt")

    def get_stats(self) -> RelayStats:
        """Получить статистику сервиса."""
        return RelayStats(
            total_published=self._total_published,
            total_failed=self._total_failed,
            unique_drivers=len(self._last_timestamps),
            observed_messages=self._observed_messages,
        )
