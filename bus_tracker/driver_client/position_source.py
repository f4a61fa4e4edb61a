# bus_tracker/driver_client/position_source.py
"""
Источники позиции водителя.

PositionSource отдаёт поток фиксов с частотой, которую определяет сам
источник. На устройстве это GPS, в симуляторе — заранее заданный маршрут.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Awaitable, Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from bus_tracker.driver_client.errors import (
    GeolocationPermissionError,
    GeolocationUnavailableError,
)


class Position(BaseModel):
    """Одно показание GPS."""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


# Центр Колкаты, точка по умолчанию на карте водителя
DEFAULT_CENTER = Position(latitude=22.5726, longitude=88.3639)

# Демонстрационный маршрут в порядке карты [lng, lat]
DEMO_ROUTE_LNGLAT: list[tuple[float, float]] = [
    (88.3639, 22.5726),
    (88.3652, 22.5731),
    (88.3667, 22.5738),
    (88.3681, 22.5745),
    (88.3694, 22.5751),
    (88.3708, 22.5760),
]


class PositionSource(ABC):
    """Абстрактный источник позиции."""

    @abstractmethod
    def watch(self) -> AsyncIterator[Position]:
        """
        Асинхронный поток позиций.

        Raises:
            GeolocationUnavailableError: геолокация не поддерживается
            GeolocationPermissionError: доступ запрещён
            PositionSourceError: временный сбой, поток можно открыть заново
        """


class ReplayPositionSource(PositionSource):
    """
    Проигрывает фиксированный маршрут с заданным интервалом.

    Используется симулятором водителя и в тестах.
    """

    def __init__(
        self,
        route: Sequence[Position],
        interval: float = 3.0,
        loop: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not route:
            raise ValueError("Маршрут пуст")
        self.route = list(route)
        self.interval = interval
        self.loop = loop
        self._sleep = sleep

    @classmethod
    def from_lnglat(cls, coordinates: Sequence[Sequence[float]], **kwargs) -> ReplayPositionSource:
        """Создаёт источник из координат в порядке карты [lng, lat]."""
        route = [Position(latitude=lat, longitude=lng) for lng, lat in coordinates]
        return cls(route, **kwargs)

    async def watch(self) -> AsyncIterator[Position]:
        first = True
        while True:
            for position in self.route:
                if not first:
                    await self._sleep(self.interval)
                first = False
                yield position
            if not self.loop:
                return


class UnavailablePositionSource(PositionSource):
    """Устройство без геолокации либо с запрещённым доступом."""

    def __init__(self, permission_denied: bool = False) -> None:
        self.permission_denied = permission_denied

    async def watch(self) -> AsyncIterator[Position]:
        if self.permission_denied:
            raise GeolocationPermissionError(
                "Could not get location. Please grant permission and ensure you have a signal."
            )
        raise GeolocationUnavailableError("Geolocation is not supported by this device.")
        yield  # делает метод асинхронным генератором
