# bus_tracker/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей."""
    PASSENGER = "passenger"
    DRIVER = "driver"
    ADMIN = "admin"


class TrackerStatus(str, Enum):
    """Состояние трансляции геолокации водителя."""
    IDLE = "idle"
    LIVE = "live"
    RETRYING = "retrying"
    ERROR = "error"


# Символы, недопустимые в сегменте MQTT-топика
TOPIC_FORBIDDEN_CHARS = frozenset({"/", "+", "#", "\x00"})

# Ответы эндпоинта публикации
MSG_PUBLISH_OK = "Location published successfully"
MSG_MISSING_FIELDS = "Missing driver ID or location data"
MSG_INVALID_LOCATION = "Invalid location data"
MSG_INVALID_DRIVER_ID = "Invalid driver ID"
MSG_RELAY_FAILED = "Failed to publish location via MQTT"
MSG_RELAY_TIMEOUT = "Timed out publishing location via MQTT"
MSG_MISSING_TOKEN = "Missing authorization token"
MSG_INVALID_TOKEN = "Invalid or expired token"
MSG_TOKEN_MISMATCH = "Token does not match driver ID"
