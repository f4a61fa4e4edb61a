# tests/services/test_location_relay_auth.py
"""
Тесты для проверки токена водителя.
"""

from __future__ import annotations

import pytest
from jose import jwt

from bus_tracker.common.constants import MSG_MISSING_TOKEN
from bus_tracker.services.location_relay.auth import (
    create_driver_token,
    decode_driver_token,
    verify_driver,
)
from bus_tracker.shared.errors import AuthorizationError, ForbiddenDriverError


SECRET = "unit-test-secret"


class TestCreateDriverToken:
    """Тесты для выпуска токена."""

    def test_claims(self) -> None:
        """Токен содержит id, role=driver и exp."""
        token = create_driver_token("d1", SECRET)
        claims = jwt.decode(token, SECRET, algorithms=["HS256"])

        assert claims["id"] == "d1"
        assert claims["role"] == "driver"
        assert "exp" in claims


class TestDecodeDriverToken:
    """Тесты для декодирования токена."""

    def test_valid(self) -> None:
        """Подпись верна."""
        claims = decode_driver_token(create_driver_token("d1", SECRET), SECRET)
        assert claims["id"] == "d1"

    def test_wrong_secret(self) -> None:
        """Чужая подпись."""
        token = create_driver_token("d1", "other-secret")

        with pytest.raises(AuthorizationError):
            decode_driver_token(token, SECRET)

    def test_expired(self) -> None:
        """Срок действия истёк."""
        token = create_driver_token("d1", SECRET, ttl_days=-1)

        with pytest.raises(AuthorizationError):
            decode_driver_token(token, SECRET)

    def test_no_secret_configured(self) -> None:
        """Без секрета токен проверить нельзя."""
        with pytest.raises(AuthorizationError):
            decode_driver_token(create_driver_token("d1", SECRET), "")


class TestVerifyDriver:
    """Тесты для сверки токена и driverId."""

    def test_no_token_optional(self) -> None:
        """Токен не обязателен — None."""
        assert verify_driver(None, "d1", secret=SECRET) is None

    def test_no_token_required(self) -> None:
        """Токен обязателен — 401."""
        with pytest.raises(AuthorizationError) as exc_info:
            verify_driver(None, "d1", secret=SECRET, require_token=True)

        assert exc_info.value.message == MSG_MISSING_TOKEN
        assert exc_info.value.status_code == 401

    def test_matching_driver(self) -> None:
        """Токен того же водителя."""
        claims = verify_driver(create_driver_token("d1", SECRET), "d1", secret=SECRET)
        assert claims["id"] == "d1"

    def test_numeric_id_claim(self) -> None:
        """Числовой id в токене сравнивается как строка."""
        token = jwt.encode({"id": 42, "role": "driver"}, SECRET, algorithm="HS256")
        assert verify_driver(token, "42", secret=SECRET)["id"] == 42

    def test_other_driver(self) -> None:
        """Токен другого водителя — 403."""
        with pytest.raises(ForbiddenDriverError) as exc_info:
            verify_driver(create_driver_token("d2", SECRET), "d1", secret=SECRET)

        assert exc_info.value.status_code == 403

    def test_not_a_driver(self) -> None:
        """Токен пассажира не даёт права публиковать."""
        token = jwt.encode({"id": "d1", "role": "passenger"}, SECRET, algorithm="HS256")

        with pytest.raises(ForbiddenDriverError):
            verify_driver(token, "d1", secret=SECRET)
