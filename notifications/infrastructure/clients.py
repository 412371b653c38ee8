from typing import Any, Dict, List

import httpx
from loguru import logger
from pydantic import ValidationError

from ..application.ports import NotificationBackend
from ..domain.entities import NotificationPage, NotificationPreferences
from ..domain.exceptions import NotificationBackendError


class HttpxNotificationBackend(NotificationBackend):
    """REST client for the notification endpoints of the backend.

    Requests act for the user set through `bind_user`, sent as the
    ``X-User-Id`` header. Every transport, status or payload failure is
    raised as `NotificationBackendError`.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        notifications_path: str,
        preferences_path: str,
    ) -> None:
        self._client = client
        self._notifications_path = notifications_path.rstrip("/")
        self._preferences_path = preferences_path
        self._user_id: str | None = None

    def bind_user(self, user_id: str | None) -> None:
        self._user_id = user_id

    async def fetch_notifications(
        self, page: int = 1, limit: int = 20, unread_only: bool = False
    ) -> NotificationPage:
        params = {"page": page, "limit": limit}
        if unread_only:
            params["unreadOnly"] = "true"

        data = await self._request("GET", self._notifications_path, params=params)
        return self._parse(NotificationPage, data, "notification list")

    async def mark_as_read(self, notification_ids: List[str]) -> None:
        await self._request(
            "PATCH", self._notifications_path, json={"ids": list(notification_ids)}
        )

    async def mark_all_as_read(self) -> None:
        await self._request("PATCH", self._notifications_path, json={"all": True})

    async def get_preferences(self) -> NotificationPreferences:
        data = await self._request("GET", self._preferences_path)
        return self._parse(NotificationPreferences, data, "preferences")

    async def save_preferences(
        self, preferences: NotificationPreferences
    ) -> NotificationPreferences:
        data = await self._request(
            "PUT", self._preferences_path, json=preferences.to_wire()
        )
        return self._parse(NotificationPreferences, data, "preferences")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if self._user_id is None:
            raise NotificationBackendError("No user bound to the notification client")

        headers: Dict[str, str] = {"X-User-Id": self._user_id}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"🟠 {method} {path} failed with status {e.response.status_code}")
            raise NotificationBackendError(
                f"{method} {path} failed: {self._error_message(e.response)}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"🟠 {method} {path} failed: {e}")
            raise NotificationBackendError(f"{method} {path} failed: {e}") from e

        if not response.content:
            return None
        try:
            payload = response.json()
        except ValueError as e:
            raise NotificationBackendError(
                f"{method} {path} returned invalid JSON", status_code=response.status_code
            ) from e
        return self._unwrap(payload)

    @staticmethod
    def _unwrap(payload: Any) -> Any:
        # Successful responses are wrapped in a ``{"success": ..., "data": ...}`` envelope.
        if isinstance(payload, dict) and "success" in payload and "data" in payload:
            return payload["data"]
        return payload

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.reason_phrase or str(response.status_code)
        if isinstance(payload, dict):
            return str(payload.get("message") or payload.get("detail") or payload)
        return str(payload)

    @staticmethod
    def _parse(model, data: Any, what: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise NotificationBackendError(f"Malformed {what} response: {e}") from e
