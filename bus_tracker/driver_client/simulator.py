# bus_tracker/driver_client/simulator.py
"""
Симулятор водителя: проигрывает демонстрационный маршрут через Location Relay.
"""

from __future__ import annotations

import asyncio

from bus_tracker.common.constants import TrackerStatus, TypeMsg
from bus_tracker.common.logger import log_info
from bus_tracker.config import settings
from bus_tracker.driver_client.position_source import DEMO_ROUTE_LNGLAT, ReplayPositionSource
from bus_tracker.driver_client.publisher import LocationPublisher
from bus_tracker.driver_client.tracker import LocationTracker


async def report_status(status: TrackerStatus, error: str | None) -> None:
    """Выводит статус трансляции так, как его увидел бы водитель."""
    match status:
        case TrackerStatus.LIVE:
            text = "Your location is live"
        case TrackerStatus.RETRYING:
            text = f"Connection problem, retrying: {error}"
        case TrackerStatus.ERROR:
            text = f"Location sharing failed: {error}"
        case _:
            text = "Location sharing stopped"
    await log_info(f"[{settings.tracker.TRACKER_DRIVER_ID}] {text}", type_msg=TypeMsg.INFO)


async def run_simulator(stop_event: asyncio.Event | None = None) -> LocationTracker:
    """
    Запускает трекер по демонстрационному маршруту.

    Работает до исчерпания маршрута, фатальной ошибки или stop_event.
    """
    tracker_settings = settings.tracker

    source = ReplayPositionSource.from_lnglat(
        DEMO_ROUTE_LNGLAT,
        interval=tracker_settings.TRACKER_REPLAY_INTERVAL,
        loop=tracker_settings.TRACKER_REPLAY_LOOP,
    )

    async with LocationPublisher(
        settings.deployment.LOCATION_RELAY_URL,
        tracker_settings.TRACKER_DRIVER_ID,
        token=tracker_settings.TRACKER_DRIVER_TOKEN or None,
        timeout=tracker_settings.TRACKER_REQUEST_TIMEOUT,
    ) as publisher:
        tracker = LocationTracker.from_settings(source, publisher, tracker_settings, on_status=report_status)
        task = tracker.start()

        if stop_event is None:
            await task
        else:
            waiter = asyncio.create_task(stop_event.wait())
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            waiter.cancel()
            await tracker.stop()

    await log_info(
        f"Симулятор завершён: опубликовано {tracker.published_count}, ошибок {tracker.failed_count}",
        type_msg=TypeMsg.INFO,
    )
    return tracker
