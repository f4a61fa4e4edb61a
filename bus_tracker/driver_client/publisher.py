# bus_tracker/driver_client/publisher.py
"""
HTTP клиент публикации геолокации водителя.
"""

from __future__ import annotations

from typing import Any

import httpx

from bus_tracker.driver_client.errors import PublishFailedError, PublishRejectedError
from bus_tracker.driver_client.position_source import Position


PUBLISH_PATH = "/api/driver/publish-location"


class LocationPublisher:
    """Отправляет фиксы водителя в Location Relay."""

    def __init__(
        self,
        base_url: str,
        driver_id: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.driver_id = driver_id
        self.token = token
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> LocationPublisher:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def publish(self, position: Position) -> dict[str, Any]:
        """
        Публикует позицию.

        Returns:
            Ответ сервера {"status": ..., "topic": ...}

        Raises:
            PublishRejectedError: ответ 4xx
            PublishFailedError: ответ 5xx или сетевая ошибка
        """
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        body = {
            "driverId": self.driver_id,
            "latitude": position.latitude,
            "longitude": position.longitude,
        }

        try:
            response = await self.client.post(PUBLISH_PATH, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise PublishFailedError(f"Error sending location: {e}") from e

        if response.is_success:
            return response.json()

        message = _error_message(response)
        if response.status_code >= 500:
            raise PublishFailedError(message, status_code=response.status_code)
        raise PublishRejectedError(message, status_code=response.status_code)


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error")
    except (ValueError, AttributeError):
        error = None
    return f"Failed to send location: {error or response.reason_phrase} ({response.status_code})"
