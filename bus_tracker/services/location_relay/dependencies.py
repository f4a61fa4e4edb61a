# bus_tracker/services/location_relay/dependencies.py
"""
Зависимости для Location Relay.
Инициализация и управление ресурсами.
"""

from __future__ import annotations

from typing import Optional

from bus_tracker.common.constants import TypeMsg
from bus_tracker.common.logger import log_info
from bus_tracker.config import settings
from bus_tracker.infra.mqtt_client import BrokerConnection
from bus_tracker.services.location_relay.service import LocationRelayService


# Глобальные экземпляры ресурсов
_broker: Optional[BrokerConnection] = None

# Сервисы
_relay_service: Optional[LocationRelayService] = None


async def init_dependencies() -> None:
    """
    Инициализация всех зависимостей сервиса.

    Raises:
        BrokerConnectError: брокер недоступен, сервис не должен стартовать
    """
    global _broker, _relay_service

    _broker = BrokerConnection.from_settings(settings.mqtt)
    _relay_service = LocationRelayService.from_settings(_broker, settings)

    # Подписка регистрируется до подключения и повторяется при каждом переподключении
    await _broker.subscribe(
        settings.mqtt.MQTT_OBSERVER_TOPIC,
        _relay_service.observe_message,
        qos=settings.mqtt.MQTT_QOS,
    )
    await _broker.connect()
    await log_info("MQTT подключён", type_msg=TypeMsg.DEBUG)

    await log_info("Location Relay инициализирован", type_msg=TypeMsg.INFO)


async def close_dependencies() -> None:
    """Закрытие всех ресурсов."""
    global _broker, _relay_service

    if _broker:
        await _broker.close()
        await log_info("MQTT отключён", type_msg=TypeMsg.DEBUG)

    _broker = None
    _relay_service = None


async def get_broker() -> BrokerConnection:
    """Получение экземпляра BrokerConnection."""
    if _broker is None:
        raise RuntimeError("BrokerConnection не инициализирован")
    return _broker


async def get_relay_service() -> LocationRelayService:
    """Получение экземпляра LocationRelayService."""
    if _relay_service is None:
        raise RuntimeError("LocationRelayService не инициализирован")
    return _relay_service
