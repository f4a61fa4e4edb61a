# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import itertools
import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Generator
from unittest.mock import MagicMock, patch

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
os.environ.setdefault("MQTT_USERNAME", "test_user")
os.environ.setdefault("MQTT_PASSWORD", "test_password")

import paho.mqtt.client as mqtt

from bus_tracker.infra.mqtt_client import BrokerConnection


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "bus_tracker_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "COMPONENT_MODE": "location_relay",
        "LOCATION_RELAY_HOST": "127.0.0.1",
        "LOCATION_RELAY_PORT": 5001,
        "LOCATION_RELAY_URL": "http://127.0.0.1:5001",
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "json",
        "MQTT_HOST": "broker.test",
        "MQTT_PORT": 1883,
        "MQTT_USE_TLS": False,
        "MQTT_CLIENT_ID_PREFIX": "BusTrackerTest",
        "MQTT_RECONNECT_INTERVAL": 1.0,
        "MQTT_CONNECT_TIMEOUT": 2.0,
        "MQTT_PUBLISH_TIMEOUT": 1.0,
        "MQTT_MAX_QUEUED_MESSAGES": 10,
        "MQTT_LOCATION_TOPIC_PREFIX": "bus/location/",
        "MQTT_OBSERVER_TOPIC": "bus/#",
        "RELAY_PUBLISH_ATTEMPTS": 3,
        "RELAY_RETRY_BACKOFF": 0.0,
        "AUTH_JWT_ALGORITHM": "HS256",
        "AUTH_REQUIRE_DRIVER_TOKEN": False,
        "TRACKER_MAX_ATTEMPTS": 4,
        "TRACKER_DRIVER_ID": "bus-7",
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

class FakeBroker:
    """
    Брокер в памяти с интерфейсом BrokerConnection.

    errors — исключения, которые publish выбросит по очереди;
    always_fail — исключение для каждого вызова publish.
    """

    def __init__(self) -> None:
        self.connected = False
        self.published: list[tuple[str, Any, int]] = []
        self.publish_calls = 0
        self.subscriptions: dict[str, Any] = {}
        self.errors: list[Exception] = []
        self.always_fail: Exception | None = None
        self.last_error: str | None = None
        self.closed = False

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False
        self.closed = True

    async def subscribe(self, topic_filter: str, handler: Any, qos: int = 1) -> None:
        self.subscriptions[topic_filter] = handler

    async def publish(self, topic: str, payload: Any, qos: int = 1) -> None:
        self.publish_calls += 1
        if self.always_fail is not None:
            raise self.always_fail
        if self.errors:
            raise self.errors.pop(0)
        self.published.append((topic, payload, qos))

    async def health_check(self) -> bool:
        return self.connected


@pytest.fixture
def fake_broker() -> FakeBroker:
    """Брокер в памяти."""
    return FakeBroker()


@pytest.fixture
def relay_client(fake_broker: FakeBroker) -> Generator:
    """TestClient Location Relay с брокером в памяти."""
    from fastapi.testclient import TestClient
    from bus_tracker.services.location_relay.app import app

    with patch("bus_tracker.services.location_relay.dependencies.BrokerConnection") as broker_cls:
        broker_cls.from_settings.return_value = fake_broker
        with TestClient(app) as client:
            yield client


@pytest.fixture
def paho_client() -> MagicMock:
    """
    Мок paho клиента: подписка и публикация успешны.

    publish_rc — код возврата publish;
    auto_ack — брокер сразу подтверждает сообщение (вызов on_publish).
    """
    client = MagicMock()
    client.subscribe.return_value = (mqtt.MQTT_ERR_SUCCESS, 1)
    client.publish_rc = mqtt.MQTT_ERR_SUCCESS
    client.auto_ack = True
    mids = itertools.count(1)

    ack_code = MagicMock()
    ack_code.is_failure = False

    def publish(topic: str, payload: Any, qos: int = 0, retain: bool = False) -> MagicMock:
        info = MagicMock()
        info.rc = client.publish_rc
        info.mid = next(mids)
        if client.auto_ack and info.rc == mqtt.MQTT_ERR_SUCCESS:
            client.on_publish(client, None, info.mid, ack_code, None)
        return info

    client.publish.side_effect = publish
    return client


@pytest.fixture
def make_connection(paho_client: MagicMock) -> Callable[..., BrokerConnection]:
    """Фабрика BrokerConnection поверх мока paho клиента."""

    def factory(**kwargs: Any) -> BrokerConnection:
        params = {
            "use_tls": False,
            "connect_timeout": 1.0,
            "publish_timeout": 0.5,
            "client_factory": lambda client_id: paho_client,
        }
        params.update(kwargs)
        return BrokerConnection("broker.test", 1883, **params)

    return factory


# =============================================================================
# УТИЛИТЫ
# =============================================================================

class SteppingClock:
    """Управляемые часы для меток времени."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> SteppingClock:
    """Часы, начинающиеся с 2025-01-15T12:00:00Z."""
    return SteppingClock()
