# bus_tracker/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними сервисами: MQTT брокер.
"""

from bus_tracker.infra.mqtt_client import BrokerConnection, MessageHandler, make_client_id

__all__ = [
    "BrokerConnection",
    "MessageHandler",
    "make_client_id",
]
