# bus_tracker/__init__.py
"""
Bus Tracker — ретрансляция геолокации водителей автобусов в MQTT.
"""
