# bus_tracker/driver_client/errors.py
"""
Ошибки клиента водителя.
"""

from __future__ import annotations


class PositionSourceError(Exception):
    """Временный сбой чтения позиции (нет сигнала, таймаут). Повторяется."""
    pass


class GeolocationUnavailableError(Exception):
    """Устройство не поддерживает геолокацию."""
    pass


class GeolocationPermissionError(Exception):
    """Пользователь запретил доступ к геолокации."""
    pass


class PublishFailedError(Exception):
    """Сервер недоступен или ответил 5xx. Повторяется с backoff."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PublishRejectedError(Exception):
    """Сервер отклонил запрос (4xx). Повтор не поможет."""

    def __init__(self, message: str, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(message)
