# bus_tracker/services/__init__.py
"""
HTTP сервисы проекта.
"""
