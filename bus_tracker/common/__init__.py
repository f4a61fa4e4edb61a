# bus_tracker/common/__init__.py
"""
Общие утилиты, константы и логгер.
"""

from bus_tracker.common.logger import get_logger, log_info, log_error, log_warning, log_debug, setup_logging
from bus_tracker.common.constants import TypeMsg, UserRole, TrackerStatus

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "setup_logging",
    "TypeMsg",
    "UserRole",
    "TrackerStatus",
]
