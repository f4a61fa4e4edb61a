#!/usr/bin/env python3
"""
Entrypoint для Location Relay.

Запуск:
    python entrypoint_location_relay.py

Порт по умолчанию: 5000
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from bus_tracker.config import settings


def main() -> None:
    """Запустить Location Relay."""
    uvicorn.run(
        "bus_tracker.services.location_relay.app:app",
        host=settings.deployment.LOCATION_RELAY_HOST,
        port=settings.deployment.LOCATION_RELAY_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
