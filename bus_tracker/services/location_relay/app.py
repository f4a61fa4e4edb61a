# bus_tracker/services/location_relay/app.py
"""
FastAPI приложение для Location Relay.

Приём геолокации от водителей и ретрансляция в MQTT брокер.

Endpoints:
- POST /api/driver/publish-location - опубликовать координаты водителя
- GET /health - проверка здоровья
- GET /ready - готовность (есть соединение с брокером)
- GET /stats - статистика ретранслятора
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bus_tracker.common.constants import MSG_INVALID_LOCATION, MSG_MISSING_FIELDS, TypeMsg
from bus_tracker.common.logger import log_info, log_warning, setup_logging
from bus_tracker.config import settings
from bus_tracker.infra.mqtt_client import BrokerConnection
from bus_tracker.services.location_relay.auth import verify_driver
from bus_tracker.services.location_relay.dependencies import (
    close_dependencies,
    get_broker,
    get_relay_service,
    init_dependencies,
)
from bus_tracker.services.location_relay.service import (
    LocationRelayService,
    validate_location_request,
)
from bus_tracker.shared.errors import BusTrackerError
from bus_tracker.shared.models.common import ErrorResponse, HealthStatus
from bus_tracker.shared.models.location import (
    PublishLocationRequest,
    PublishLocationResponse,
    RelayStats,
)


SERVICE_NAME = "location_relay"

_started_at: float | None = None

bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Жизненный цикл приложения."""
    global _started_at

    setup_logging()
    await log_info("Location Relay запускается...", type_msg=TypeMsg.INFO)

    if not settings.auth.AUTH_REQUIRE_DRIVER_TOKEN:
        await log_warning(
            "AUTH_REQUIRE_DRIVER_TOKEN выключен: публикация принимается без токена водителя"
        )

    # BrokerConnectError прерывает запуск
    await init_dependencies()
    _started_at = time.monotonic()

    yield

    await close_dependencies()
    await log_info("Location Relay остановлен", type_msg=TypeMsg.INFO)


# =============================================================================
# ПРИЛОЖЕНИЕ
# =============================================================================

app = FastAPI(
    title="Location Relay",
    description="Ретрансляция геолокации водителей в MQTT брокер",
    version=settings.system.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Страница водителя открывается с другого origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ОБРАБОТЧИКИ ОШИБОК
# =============================================================================

@app.exception_handler(BusTrackerError)
async def bus_tracker_error_handler(request: Request, exc: BusTrackerError) -> JSONResponse:
    """Ошибки домена отдаются как {"error": message}."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Тело не разобрано: отсутствует целиком или поля неверного типа."""
    missing = any(err.get("type") == "missing" for err in exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error=MSG_MISSING_FIELDS if missing else MSG_INVALID_LOCATION).model_dump(),
    )


# =============================================================================
# HEALTH CHECK
# =============================================================================

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    deps = {}

    try:
        broker = await get_broker()
        deps["mqtt"] = "healthy" if await broker.health_check() else "unhealthy"
    except RuntimeError:
        deps["mqtt"] = "unhealthy"

    overall = "healthy" if all(v == "healthy" for v in deps.values()) else "degraded"

    return HealthStatus(
        service=SERVICE_NAME,
        status=overall,
        version=settings.system.VERSION,
        uptime_seconds=round(time.monotonic() - _started_at, 3) if _started_at else None,
        dependencies=deps,
    )


@app.get("/ready", tags=["Health"], responses={503: {"description": "Нет соединения с брокером"}})
async def readiness_check(broker: BrokerConnection = Depends(get_broker)) -> JSONResponse:
    """Готовность принимать геолокацию."""
    if await broker.health_check():
        return JSONResponse(content={"status": "ready"})
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready", "error": broker.last_error},
    )


# =============================================================================
# STATS
# =============================================================================

@app.get("/stats", response_model=RelayStats, tags=["Stats"])
async def get_stats(service: LocationRelayService = Depends(get_relay_service)) -> RelayStats:
    """Получить статистику ретранслятора."""
    return service.get_stats()


# =============================================================================
# DRIVER API
# =============================================================================

@app.post(
    "/api/driver/publish-location",
    response_model=PublishLocationResponse,
    tags=["Driver"],
    summary="Опубликовать геолокацию",
    responses={
        400: {"model": ErrorResponse, "description": "Нет driverId или координат"},
        401: {"model": ErrorResponse, "description": "Токен отсутствует или невалиден"},
        403: {"model": ErrorResponse, "description": "Токен другого водителя"},
        500: {"model": ErrorResponse, "description": "Ошибка публикации в MQTT"},
        504: {"model": ErrorResponse, "description": "Брокер не подтвердил публикацию"},
    },
)
async def publish_location(
    body: PublishLocationRequest,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: LocationRelayService = Depends(get_relay_service),
) -> PublishLocationResponse:
    """
    Опубликовать координаты водителя в bus/location/{driverId}.

    Метка времени ставится сервером.
    """
    driver_id, latitude, longitude = validate_location_request(body)

    verify_driver(
        credentials.credentials if credentials else None,
        driver_id,
        secret=settings.auth.AUTH_JWT_SECRET,
        algorithm=settings.auth.AUTH_JWT_ALGORITHM,
        require_token=settings.auth.AUTH_REQUIRE_DRIVER_TOKEN,
    )

    return await service.publish_location(driver_id, latitude, longitude)
