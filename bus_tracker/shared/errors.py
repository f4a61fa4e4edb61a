# bus_tracker/shared/errors.py
"""
Иерархия ошибок ретрансляции геолокации.
Каждая ошибка несёт HTTP статус и сообщение для клиента.
"""

from __future__ import annotations

from bus_tracker.common.constants import (
    MSG_INVALID_TOKEN,
    MSG_MISSING_FIELDS,
    MSG_RELAY_FAILED,
    MSG_RELAY_TIMEOUT,
    MSG_TOKEN_MISMATCH,
)


class BusTrackerError(Exception):
    """Базовая ошибка с HTTP статусом."""
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        # Внутренние подробности (ошибка брокера и т.п.), клиенту не отдаются
        self.detail = detail
        super().__init__(self.message)


class LocationValidationError(BusTrackerError):
    """Отсутствуют или некорректны поля запроса."""
    status_code = 400
    default_message = MSG_MISSING_FIELDS


class AuthorizationError(BusTrackerError):
    """Токен отсутствует, невалиден или истёк."""
    status_code = 401
    default_message = MSG_INVALID_TOKEN


class ForbiddenDriverError(BusTrackerError):
    """Токен принадлежит другому водителю."""
    status_code = 403
    default_message = MSG_TOKEN_MISMATCH


class RelayError(BusTrackerError):
    """Публикация в брокер не удалась (нет соединения, отказ брокера)."""
    status_code = 500
    default_message = MSG_RELAY_FAILED


class RelayTimeout(RelayError):
    """Публикация не завершилась за отведённое время."""
    status_code = 504
    default_message = MSG_RELAY_TIMEOUT


class BrokerConnectError(Exception):
    """Не удалось установить соединение с брокером (учётные данные, TLS, сеть)."""
    pass
