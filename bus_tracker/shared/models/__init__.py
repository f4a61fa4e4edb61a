# bus_tracker/shared/models/__init__.py
from bus_tracker.shared.models.common import ErrorResponse, HealthStatus
from bus_tracker.shared.models.location import (
    LocationFix,
    LocationPayload,
    PublishLocationRequest,
    PublishLocationResponse,
    RelayStats,
    format_timestamp,
)

__all__ = [
    "ErrorResponse",
    "HealthStatus",
    "LocationFix",
    "LocationPayload",
    "PublishLocationRequest",
    "PublishLocationResponse",
    "RelayStats",
    "format_timestamp",
]
