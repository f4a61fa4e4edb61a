# bus_tracker/shared/__init__.py
"""
Общие модели и ошибки для всех компонентов.
"""
