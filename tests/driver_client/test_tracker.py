# tests/driver_client/test_tracker.py
"""
Тесты для LocationTracker: повторы, backoff и статус трансляции.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest

from bus_tracker.common.constants import TrackerStatus
from bus_tracker.driver_client.errors import (
    GeolocationPermissionError,
    PositionSourceError,
    PublishFailedError,
    PublishRejectedError,
)
from bus_tracker.driver_client.position_source import (
    Position,
    PositionSource,
    ReplayPositionSource,
    UnavailablePositionSource,
)
from bus_tracker.driver_client.tracker import LocationTracker


ROUTE = [Position(latitude=22.57, longitude=88.36), Position(latitude=22.58, longitude=88.37)]


def make_publisher(side_effect=None) -> MagicMock:
    publisher = MagicMock()
    publisher.driver_id = "d1"
    publisher.publish = AsyncMock(side_effect=side_effect)
    return publisher


class FlakySource(PositionSource):
    """Источник, который первые failures раз падает с временной ошибкой."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.opened = 0

    async def watch(self) -> AsyncIterator[Position]:
        self.opened += 1
        if self.opened <= self.failures:
            raise PositionSourceError("no signal")
        for position in ROUTE:
            yield position


class TestBackoff:
    """Тесты для политики backoff."""

    def test_exponential_and_capped(self) -> None:
        """Пауза удваивается и ограничена max_backoff."""
        tracker = LocationTracker(
            ReplayPositionSource(ROUTE), make_publisher(), initial_backoff=1.0, max_backoff=5.0
        )
        assert [tracker.backoff(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_from_settings(self) -> None:
        """Параметры берутся из секции tracker."""
        from bus_tracker.config.loader import TrackerSettings

        tracker = LocationTracker.from_settings(
            ReplayPositionSource(ROUTE),
            make_publisher(),
            TrackerSettings(TRACKER_MAX_ATTEMPTS=3, TRACKER_INITIAL_BACKOFF=0.5, TRACKER_MAX_BACKOFF=2.0),
        )
        assert tracker.backoff(1) == 0.5
        assert tracker.backoff(4) == 2.0


class TestRun:
    """Тесты для основного цикла трекера."""

    @pytest.mark.asyncio
    async def test_publishes_every_fix(self) -> None:
        """Каждый фикс источника публикуется, статус live → idle."""
        publisher = make_publisher()
        statuses: list[TrackerStatus] = []

        async def on_status(status: TrackerStatus, error: str | None) -> None:
            statuses.append(status)

        tracker = LocationTracker(
            ReplayPositionSource(ROUTE, sleep=AsyncMock()), publisher, on_status=on_status
        )
        await tracker.run()

        assert [call.args[0] for call in publisher.publish.await_args_list] == ROUTE
        assert tracker.published_count == 2
        assert statuses == [TrackerStatus.LIVE, TrackerStatus.IDLE]

    @pytest.mark.asyncio
    async def test_retries_server_errors_with_backoff(self) -> None:
        """5xx повторяется с растущей паузой, затем статус live."""
        sleep = AsyncMock()
        publisher = make_publisher(
            side_effect=[PublishFailedError("500", 500), PublishFailedError("500", 500), {"status": "ok"}]
        )
        statuses: list[tuple[TrackerStatus, str | None]] = []

        async def on_status(status: TrackerStatus, error: str | None) -> None:
            statuses.append((status, error))

        tracker = LocationTracker(
            ReplayPositionSource(ROUTE[:1]), publisher, initial_backoff=1.0, on_status=on_status, sleep=sleep
        )
        await tracker.run()

        assert publisher.publish.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]
        assert statuses[0] == (TrackerStatus.RETRYING, "500")
        assert (TrackerStatus.LIVE, None) in statuses

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        """После max_attempts фикс пропускается, статус error."""
        publisher = make_publisher(side_effect=PublishFailedError("relay down"))
        tracker = LocationTracker(
            ReplayPositionSource(ROUTE[:1]), publisher, max_attempts=3, sleep=AsyncMock()
        )

        assert await tracker.publish_fix(ROUTE[0]) is False

        assert publisher.publish.await_count == 3
        assert tracker.status == TrackerStatus.ERROR
        assert tracker.last_error == "relay down"
        assert tracker.failed_count == 1

    @pytest.mark.asyncio
    async def test_rejected_not_retried(self) -> None:
        """4xx не повторяется."""
        sleep = AsyncMock()
        publisher = make_publisher(side_effect=PublishRejectedError("Invalid driver ID", 400))
        tracker = LocationTracker(ReplayPositionSource(ROUTE[:1]), publisher, sleep=sleep)

        assert await tracker.publish_fix(ROUTE[0]) is False

        publisher.publish.assert_awaited_once()
        sleep.assert_not_awaited()
        assert tracker.status == TrackerStatus.ERROR

    @pytest.mark.asyncio
    async def test_recovers_to_live(self) -> None:
        """После ошибки успешный фикс возвращает статус live."""
        publisher = make_publisher(side_effect=[PublishRejectedError("403", 403), {"status": "ok"}])
        tracker = LocationTracker(ReplayPositionSource(ROUTE, sleep=AsyncMock()), publisher)

        await tracker.publish_fix(ROUTE[0])
        assert tracker.status == TrackerStatus.ERROR

        await tracker.publish_fix(ROUTE[1])
        assert tracker.status == TrackerStatus.LIVE
        assert tracker.last_error is None

    @pytest.mark.asyncio
    async def test_geolocation_unavailable_is_fatal(self) -> None:
        """Нет геолокации — статус error, публикаций нет."""
        publisher = make_publisher()
        tracker = LocationTracker(UnavailablePositionSource(), publisher)

        await tracker.run()

        assert tracker.status == TrackerStatus.ERROR
        assert "not supported" in tracker.last_error
        publisher.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_permission_denied_is_fatal(self) -> None:
        """Запрет доступа — статус error."""

        class DeniedSource(PositionSource):
            async def watch(self) -> AsyncIterator[Position]:
                yield ROUTE[0]
                raise GeolocationPermissionError("denied")

        publisher = make_publisher()
        tracker = LocationTracker(DeniedSource(), publisher)

        await tracker.run()

        publisher.publish.assert_awaited_once()
        assert tracker.status == TrackerStatus.ERROR
        assert tracker.last_error == "denied"

    @pytest.mark.asyncio
    async def test_transient_source_error_reopens_watch(self) -> None:
        """Временный сбой источника — повторное открытие потока."""
        sleep = AsyncMock()
        source = FlakySource(failures=2)
        publisher = make_publisher()
        tracker = LocationTracker(source, publisher, max_attempts=5, sleep=sleep)

        await tracker.run()

        assert source.opened == 3
        assert sleep.await_count == 2
        assert tracker.published_count == 2

    @pytest.mark.asyncio
    async def test_transient_source_error_exhausted(self) -> None:
        """Источник не восстановился — статус error."""
        source = FlakySource(failures=10)
        tracker = LocationTracker(source, make_publisher(), max_attempts=3, sleep=AsyncMock())

        await tracker.run()

        assert source.opened == 3
        assert tracker.status == TrackerStatus.ERROR


class TestStartStop:
    """Тесты для запуска и остановки трансляции."""

    @pytest.mark.asyncio
    async def test_stop_cancels_endless_route(self) -> None:
        """stop() прерывает бесконечный маршрут и переводит в idle."""
        publisher = make_publisher()
        source = ReplayPositionSource(ROUTE, interval=0.01, loop=True)
        tracker = LocationTracker(source, publisher)

        task = tracker.start()
        for _ in range(100):
            if tracker.published_count >= 3:
                break
            await asyncio.sleep(0.01)

        await tracker.stop()

        assert task.done()
        assert tracker.published_count >= 3
        assert tracker.status == TrackerStatus.IDLE

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self) -> None:
        """Повторный start() возвращает ту же задачу."""
        tracker = LocationTracker(ReplayPositionSource(ROUTE, interval=0.01, loop=True), make_publisher())

        first = tracker.start()
        second = tracker.start()

        assert first is second
        await tracker.stop()
