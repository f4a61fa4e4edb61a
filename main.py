#!/usr/bin/env python3
# main.py
"""
Главная точка входа Bus Tracker.
Запускает Location Relay и/или симулятор водителя в зависимости от аргументов.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from bus_tracker.config import settings
from bus_tracker.common.logger import setup_logging, log_info, log_error
from bus_tracker.common.constants import TypeMsg


VALID_MODES = ("location_relay", "driver_simulator", "all")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def run_location_relay() -> None:
    """Запускает Location Relay (HTTP → MQTT)."""
    import uvicorn

    await log_info(
        f"Запуск Location Relay на порту {settings.deployment.LOCATION_RELAY_PORT}...",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        "bus_tracker.services.location_relay.app:app",
        host=settings.deployment.LOCATION_RELAY_HOST,
        port=settings.deployment.LOCATION_RELAY_PORT,
        reload=settings.system.DEBUG,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("Location Relay: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def run_driver_simulator() -> None:
    """Запускает симулятор водителя по демонстрационному маршруту."""
    from bus_tracker.driver_client.simulator import run_simulator

    await log_info(
        f"Запуск симулятора водителя {settings.tracker.TRACKER_DRIVER_ID} → "
        f"{settings.deployment.LOCATION_RELAY_URL}",
        type_msg=TypeMsg.INFO,
    )
    await run_simulator(stop_event=_shutdown_event)


async def main(mode: str | None = None) -> None:
    """
    Главная функция запуска.

    Args:
        mode: Режим запуска (location_relay, driver_simulator, all).
              Если None, берётся из COMPONENT_MODE.
    """
    global _running_tasks

    setup_logging()
    setup_signal_handlers()

    if mode is None:
        mode = settings.system.COMPONENT_MODE
        if mode not in VALID_MODES:
            await log_error(f"Неизвестный COMPONENT_MODE '{mode}'")
            print_usage()
            sys.exit(1)

    await log_info(
        f"Bus Tracker v{settings.system.VERSION} — запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    try:
        if mode == "location_relay":
            await run_location_relay()
        elif mode == "driver_simulator":
            await run_driver_simulator()
        elif mode == "all":
            relay_task = asyncio.create_task(run_location_relay())
            # Даём ретранслятору подключиться к брокеру
            await asyncio.sleep(2)
            simulator_task = asyncio.create_task(run_driver_simulator())
            _running_tasks = [relay_task, simulator_task]

            results = await asyncio.gather(relay_task, simulator_task, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                    await log_error(f"Компонент завершился с ошибкой: {result}")
    except asyncio.CancelledError:
        pass

    await log_info("Bus Tracker остановлен", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print(f"""
Bus Tracker v{settings.system.VERSION} — ретрансляция геолокации водителей в MQTT

Использование:
    python main.py [mode]

Режимы:
    location_relay         — HTTP → MQTT ретранслятор (:{settings.deployment.LOCATION_RELAY_PORT})
    driver_simulator       — симулятор водителя (демонстрационный маршрут)
    all                    — ретранслятор и симулятор в одном процессе

Без аргумента режим берётся из COMPONENT_MODE.

Примеры:
    python main.py location_relay
    DRIVER_ID=bus-12 python main.py driver_simulator
    """)


if __name__ == "__main__":
    mode = None

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in VALID_MODES:
            mode = arg
        else:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
