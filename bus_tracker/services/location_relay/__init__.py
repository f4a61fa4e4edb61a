# bus_tracker/services/location_relay/__init__.py
"""
Location Relay — сервис ретрансляции геолокации водителей.

Обеспечивает:
- Приём координат водителя (HTTP)
- Проверку токена водителя
- Публикацию в MQTT топик bus/location/{driverId}
- Наблюдение за bus/# для логирования
"""
