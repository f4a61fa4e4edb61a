# bus_tracker/driver_client/__init__.py
"""
Клиент водителя: источник позиции, публикатор и трекер со статусом трансляции.
"""

from bus_tracker.driver_client.errors import (
    GeolocationPermissionError,
    GeolocationUnavailableError,
    PositionSourceError,
    PublishFailedError,
    PublishRejectedError,
)
from bus_tracker.driver_client.position_source import (
    DEFAULT_CENTER,
    DEMO_ROUTE_LNGLAT,
    Position,
    PositionSource,
    ReplayPositionSource,
    UnavailablePositionSource,
)
from bus_tracker.driver_client.publisher import LocationPublisher
from bus_tracker.driver_client.tracker import LocationTracker

__all__ = [
    "DEFAULT_CENTER",
    "DEMO_ROUTE_LNGLAT",
    "GeolocationPermissionError",
    "GeolocationUnavailableError",
    "LocationPublisher",
    "LocationTracker",
    "Position",
    "PositionSource",
    "PositionSourceError",
    "PublishFailedError",
    "PublishRejectedError",
    "ReplayPositionSource",
    "UnavailablePositionSource",
]
