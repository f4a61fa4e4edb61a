# bus_tracker/driver_client/tracker.py
"""
Трансляция геолокации водителя: источник позиции → Location Relay.

Трекер хранит статус (idle / live / retrying / error) и последнюю ошибку,
чтобы интерфейс водителя показывал, идёт ли трансляция.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Callable

from bus_tracker.common.constants import TrackerStatus, TypeMsg
from bus_tracker.common.logger import log_error, log_info, log_warning
from bus_tracker.driver_client.errors import (
    GeolocationPermissionError,
    GeolocationUnavailableError,
    PositionSourceError,
    PublishFailedError,
    PublishRejectedError,
)
from bus_tracker.driver_client.position_source import Position, PositionSource
from bus_tracker.driver_client.publisher import LocationPublisher


StatusCallback = Callable[[TrackerStatus, "str | None"], Awaitable[None]]


class LocationTracker:
    """
    Связывает источник позиции и публикатор.

    Политика повторов: экспоненциальный backoff от initial_backoff,
    не больше max_backoff, не больше max_attempts попыток на один фикс.
    Ответ 4xx не повторяется. Ошибка доступа к геолокации завершает работу.
    """

    def __init__(
        self,
        source: PositionSource,
        publisher: LocationPublisher,
        *,
        max_attempts: int = 5,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
        on_status: StatusCallback | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._publisher = publisher
        self._max_attempts = max(1, max_attempts)
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._on_status = on_status
        self._sleep = sleep

        self._stopped = asyncio.Event()
        self._task: asyncio.Task | None = None

        self.status = TrackerStatus.IDLE
        self.last_error: str | None = None
        self.published_count = 0
        self.failed_count = 0

    @classmethod
    def from_settings(cls, source: PositionSource, publisher: LocationPublisher, tracker_settings, **kwargs) -> LocationTracker:
        """Создаёт трекер из секции настроек tracker."""
        return cls(
            source,
            publisher,
            max_attempts=tracker_settings.TRACKER_MAX_ATTEMPTS,
            initial_backoff=tracker_settings.TRACKER_INITIAL_BACKOFF,
            max_backoff=tracker_settings.TRACKER_MAX_BACKOFF,
            **kwargs,
        )

    def backoff(self, attempt: int) -> float:
        """Пауза перед повтором номер attempt (с 1)."""
        return min(self._initial_backoff * (2 ** (attempt - 1)), self._max_backoff)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    def start(self) -> asyncio.Task:
        """Запускает трансляцию в фоновой задаче."""
        if self._task is None or self._task.done():
            self._stopped.clear()
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Останавливает трансляцию и переводит трекер в idle."""
        self._stopped.set()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self.status != TrackerStatus.ERROR:
            await self._set_status(TrackerStatus.IDLE)

    async def run(self) -> None:
        """
        Читает источник и публикует каждый фикс.

        Возвращается, когда источник исчерпан, вызван stop() или
        геолокация недоступна.
        """
        source_failures = 0

        while not self._stopped.is_set():
            try:
                async for position in self._source.watch():
                    source_failures = 0
                    if self._stopped.is_set():
                        break
                    await self.publish_fix(position)
                break
            except (GeolocationUnavailableError, GeolocationPermissionError) as e:
                await self._set_status(TrackerStatus.ERROR, str(e))
                await log_error(f"Геолокация недоступна: {e}", extra={"driver_id": self._publisher.driver_id})
                return
            except PositionSourceError as e:
                source_failures += 1
                if source_failures >= self._max_attempts:
                    await self._set_status(TrackerStatus.ERROR, str(e))
                    await log_error(
                        f"Источник позиции не восстановился после {source_failures} попыток: {e}",
                        extra={"driver_id": self._publisher.driver_id},
                    )
                    return
                await self._set_status(TrackerStatus.RETRYING, str(e))
                await self._sleep(self.backoff(source_failures))

        if self.status == TrackerStatus.LIVE:
            await self._set_status(TrackerStatus.IDLE)

    async def publish_fix(self, position: Position) -> bool:
        """
        Публикует один фикс с повторами.

        Returns:
            True, если сервер принял фикс
        """
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._publisher.publish(position)
            except PublishRejectedError as e:
                self.failed_count += 1
                await self._set_status(TrackerStatus.ERROR, str(e))
                await log_warning(str(e), extra={"driver_id": self._publisher.driver_id})
                return False
            except PublishFailedError as e:
                if attempt >= self._max_attempts:
                    self.failed_count += 1
                    await self._set_status(TrackerStatus.ERROR, str(e))
                    await log_error(
                        f"Фикс не отправлен после {attempt} попыток: {e}",
                        extra={"driver_id": self._publisher.driver_id},
                    )
                    return False
                await self._set_status(TrackerStatus.RETRYING, str(e))
                await self._sleep(self.backoff(attempt))
            else:
                self.published_count += 1
                await self._set_status(TrackerStatus.LIVE)
                return True
        return False

    async def _set_status(self, status: TrackerStatus, error: str | None = None) -> None:
        if status == self.status and error == self.last_error:
            return
        self.status = status
        self.last_error = error
        await log_info(
            f"Трансляция геолокации: {status.value}" + (f" ({error})" if error else ""),
            type_msg=TypeMsg.DEBUG,
        )
        if self._on_status is not None:
            await self._on_status(status, error)
