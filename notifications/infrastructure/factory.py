from functools import lru_cache

import httpx
from fastapi import Header, HTTPException, status

from config.base import Settings, get_settings

from ..application.hub import NotificationHub
from .capabilities import ConsoleDesktopNotifications, TerminalBellAudio
from .clients import HttpxNotificationBackend
from .repositories import InMemoryNotificationRepository
from .services import InMemoryNotificationChannelManager, InMemoryNotificationPublisher
from .sse import HttpxStreamTransport
from .storage import JsonFileStorage


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Build the `httpx.AsyncClient` shared by the stream and REST calls."""
    return httpx.AsyncClient(
        base_url=settings.api_base_url,
        timeout=settings.http_timeout_seconds,
    )


def create_notification_hub(
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
    user_id: str | None = None,
) -> NotificationHub:
    """Compose a `NotificationHub` talking to ``settings.api_base_url``.

    Parameters
    ----------
    settings : Settings | None
        Application settings; the cached settings are used when omitted.
    client : httpx.AsyncClient | None
        Preconfigured client, e.g. with a mock transport. The hub closes it
        on dispose.
    user_id : str | None
        User REST calls act for before `NotificationHub.initialize` runs.

    Returns
    -------
    NotificationHub
        Hub ready for `NotificationHub.initialize`.
    """
    settings = settings or get_settings()
    client = client or create_http_client(settings)

    backend = HttpxNotificationBackend(
        client,
        notifications_path=settings.notifications_path,
        preferences_path=settings.preferences_path,
    )
    if user_id is not None:
        backend.bind_user(user_id)

    return NotificationHub.create(
        transport=HttpxStreamTransport(
            client,
            settings.stream_path,
            connect_timeout=settings.http_timeout_seconds,
        ),
        backend=backend,
        storage=JsonFileStorage(settings.storage_path),
        desktop=ConsoleDesktopNotifications(),
        audio=TerminalBellAudio(),
        settings=settings,
    )


@lru_cache
def get_notification_repository() -> InMemoryNotificationRepository:
    """Provide the process-wide InMemoryNotificationRepository instance.

    Returns
    -------
    InMemoryNotificationRepository
        Instance of InMemoryNotificationRepository
    """
    return InMemoryNotificationRepository()


@lru_cache
def get_notification_channel_manager() -> InMemoryNotificationChannelManager:
    """Provide the process-wide InMemoryNotificationChannelManager instance.

    Returns
    -------
    InMemoryNotificationChannelManager
        Instance of InMemoryNotificationChannelManager
    """
    return InMemoryNotificationChannelManager()


@lru_cache
def get_notification_publisher() -> InMemoryNotificationPublisher:
    """Provide the process-wide InMemoryNotificationPublisher instance.

    Returns
    -------
    InMemoryNotificationPublisher
        Instance of InMemoryNotificationPublisher
    """
    return InMemoryNotificationPublisher(get_notification_channel_manager())


def reset_notification_services() -> None:
    """Drop the in-memory server state."""
    get_notification_repository.cache_clear()
    get_notification_channel_manager.cache_clear()
    get_notification_publisher.cache_clear()


async def get_current_user_id(
    x_user_id: str | None = Header(default=None),
) -> str:
    """Resolve the acting user from the ``X-User-Id`` header.

    Raises
    ------
    HTTPException
        401 if the header is missing or blank.
    """
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()
