# bus_tracker/services/location_relay/auth.py
"""
Проверка токена водителя.

Тело запроса публикации содержит driverId, которому сервер не доверяет.
Если клиент передал Bearer токен, его claim id должен совпадать с driverId.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from bus_tracker.common.constants import MSG_MISSING_TOKEN, UserRole
from bus_tracker.shared.errors import AuthorizationError, ForbiddenDriverError


def create_driver_token(
    driver_id: str,
    secret: str,
    algorithm: str = "HS256",
    ttl_days: int = 7,
) -> str:
    """Выпускает токен водителя с claims {id, role, exp} (для локальной разработки)."""
    claims = {
        "id": str(driver_id),
        "role": UserRole.DRIVER.value,
        "exp": datetime.now(timezone.utc) + timedelta(days=ttl_days),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_driver_token(token: str, secret: str, algorithm: str = "HS256") -> dict[str, Any]:
    """
    Декодирует и проверяет подпись и срок действия токена.

    Raises:
        AuthorizationError: подпись неверна, токен истёк или повреждён
    """
    if not secret:
        raise AuthorizationError(detail="секрет JWT не настроен")
    try:
        return jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError as e:
        raise AuthorizationError(detail=str(e)) from e


def verify_driver(
    token: str | None,
    driver_id: str,
    *,
    secret: str,
    algorithm: str = "HS256",
    require_token: bool = False,
) -> dict[str, Any] | None:
    """
    Проверяет, что токен принадлежит водителю driver_id.

    Returns:
        claims токена или None, если токен не передан и не обязателен

    Raises:
        AuthorizationError: токен обязателен и отсутствует, либо невалиден
        ForbiddenDriverError: токен выдан другому водителю или не водителю
    """
    if not token:
        if require_token:
            raise AuthorizationError(MSG_MISSING_TOKEN)
        return None

    claims = decode_driver_token(token, secret, algorithm)

    if claims.get("role") != UserRole.DRIVER.value:
        raise ForbiddenDriverError(detail=f"роль {claims.get('role')!r}")
    if str(claims.get("id")) != driver_id:
        raise ForbiddenDriverError(detail=f"токен водителя {claims.get('id')!r}")

    return claims
