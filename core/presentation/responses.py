from typing import Any

from fastapi import status
from pydantic import BaseModel


class StandardResponse(BaseModel):
    """Envelope shared by every REST answer of the push server.

    Clients unwrap ``data`` when both ``success`` and ``data`` are present,
    so bare payloads and enveloped payloads decode the same way.

    Attributes
    ----------
    success: bool, default=True
        Whether the request was handled.
    data: Any, default=None
        camelCase payload: a notification, a page, preferences, or a
        mark-as-read summary.
    """

    success: bool = True
    data: Any = None


class SuccessResponse(StandardResponse):
    """Envelope for reads (HTTP 200 OK)."""

    message: str = "Notification data retrieved"
    status_code: int = status.HTTP_200_OK


class CreatedResponse(StandardResponse):
    """Envelope for a pushed notification (HTTP 201 Created).

    ``data`` is None when the request was accepted but nothing was stored,
    e.g. a user notifying themselves.
    """

    message: str = "Notification created"
    status_code: int = status.HTTP_201_CREATED


class UpdatedResponse(StandardResponse):
    """Envelope for read-state and preference changes (HTTP 202 Accepted).

    Attributes
    ----------
    message: str, default="Notification state updated"
        Descriptive success message.
    status_code: int, default=202
        HTTP status code.
    """

    message: str = "Notification state updated"
    status_code: int = status.HTTP_202_ACCEPTED
