#!/usr/bin/env python3
"""
Entrypoint для симулятора водителя.

Запуск:
    DRIVER_ID=bus-12 python entrypoint_driver_simulator.py

Публикует демонстрационный маршрут в LOCATION_RELAY_URL.
"""

import asyncio
import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

from bus_tracker.common.logger import setup_logging
from bus_tracker.driver_client.simulator import run_simulator


def main() -> None:
    """Запустить симулятор водителя."""
    setup_logging()
    try:
        asyncio.run(run_simulator())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
