from abc import ABC, abstractmethod
from typing import AsyncIterator, List

from ..domain.entities import (
    Notification,
    NotificationPage,
    NotificationPreferences,
    PermissionState,
)
from ..domain.protocol import StreamFrame


class StreamSession(ABC):
    """An open server-push stream."""

    @abstractmethod
    def frames(self) -> AsyncIterator[StreamFrame]:
        """Iterate over frames until the server closes the stream.

        Yields
        ------
        StreamFrame
            Every dispatched frame, comments included.

        Raises
        ------
        StreamTransportError
            If the transport fails mid-stream.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying transport. Must be idempotent."""
        pass


class StreamTransport(ABC):
    """Abstract base class for opening the receive-only notification stream."""

    @abstractmethod
    async def open(self, user_id: str) -> StreamSession:
        """Open a stream for ``user_id``.

        Returns once the server has accepted the stream.

        Parameters
        ----------
        user_id : str
            User the stream belongs to.

        Returns
        -------
        StreamSession
            Open session.

        Raises
        ------
        StreamTransportError
            If the stream could not be opened.
        """
        pass


class NotificationBackend(ABC):
    """Abstract base class for the backend's notification REST surface.

    Every method raises `NotificationBackendError` on failure.
    """

    def bind_user(self, user_id: str | None) -> None:
        """Set the user subsequent requests act for; None signs out."""
        pass

    @abstractmethod
    async def fetch_notifications(
        self, page: int = 1, limit: int = 20, unread_only: bool = False
    ) -> NotificationPage:
        """Fetch one page of notifications together with the unread total.

        Parameters
        ----------
        page : int
            1-based page number.
        limit : int
            Page size.
        unread_only : bool
            If True, return only unread notifications.

        Returns
        -------
        NotificationPage
            Requested page.
        """
        pass

    @abstractmethod
    async def mark_as_read(self, notification_ids: List[str]) -> None:
        """Mark the given notifications as read."""
        pass

    @abstractmethod
    async def mark_all_as_read(self) -> None:
        """Mark every notification of the current user as read."""
        pass

    @abstractmethod
    async def get_preferences(self) -> NotificationPreferences:
        """Read the authoritative preferences of the current user."""
        pass

    @abstractmethod
    async def save_preferences(
        self, preferences: NotificationPreferences
    ) -> NotificationPreferences:
        """Persist preferences and return the stored version."""
        pass

    async def aclose(self) -> None:
        """Release network resources held by the backend client."""
        pass


class KeyValueStorage(ABC):
    """Local persisted string storage, keyed by well-known names."""

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        """Return the stored value, or None if absent.

        Raises
        ------
        OSError, ValueError
            If the underlying storage cannot be read.
        """
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass


class DesktopNotificationHandle(ABC):
    """A desktop notification currently on screen."""

    @abstractmethod
    def close(self) -> None:
        pass


class DesktopNotifications(ABC):
    """Permission-gated desktop notification capability."""

    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether the platform offers desktop notifications at all."""
        pass

    @abstractmethod
    def permission(self) -> PermissionState:
        pass

    @abstractmethod
    async def request_permission(self) -> PermissionState:
        """Prompt the user once and return the decision."""
        pass

    @abstractmethod
    def show(
        self,
        title: str,
        *,
        body: str,
        tag: str,
        link_url: str | None = None,
    ) -> DesktopNotificationHandle:
        """Display a notification; clicking it navigates to ``link_url``."""
        pass


class AudioPlayback(ABC):
    """Simple audio playback capability."""

    @property
    @abstractmethod
    def available(self) -> bool:
        pass

    @abstractmethod
    async def play(self, source: str, volume: float) -> None:
        pass


class NotificationRepository(ABC):
    """Abstract base class for notification data management on the push server."""

    @abstractmethod
    async def create(self, receiver_id: str, notification: Notification) -> Notification:
        """Store a new notification for ``receiver_id``."""
        pass

    @abstractmethod
    async def get_user_notifications(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
    ) -> NotificationPage:
        """Retrieve one page of notifications for a user, newest first."""
        pass

    @abstractmethod
    async def count_unread(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def mark_as_read(self, user_id: str, notification_ids: List[str]) -> int:
        """Mark the user's notifications as read and return how many changed."""
        pass

    @abstractmethod
    async def mark_all_as_read(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def get_preferences(self, user_id: str) -> NotificationPreferences | None:
        pass

    @abstractmethod
    async def save_preferences(
        self, user_id: str, preferences: NotificationPreferences
    ) -> NotificationPreferences:
        pass


class NotificationChannelManager(ABC):
    """Abstract base class for managing open SSE channels on the push server."""

    @abstractmethod
    async def register_channel(self, user_id: str, channel_id: str) -> None:
        pass

    @abstractmethod
    async def unregister_channel(self, channel_id: str) -> bool:
        pass

    @abstractmethod
    async def get_user_channels(self, user_id: str) -> List[str]:
        pass


class NotificationPublisher(ABC):
    """Abstract base class for publishing frames to open streams."""

    @abstractmethod
    async def publish(self, user_id: str, frame: str) -> int:
        """Queue an encoded frame on every open stream of ``user_id``.

        Returns
        -------
        int
            Number of streams the frame was queued on.
        """
        pass

    @abstractmethod
    def subscribe(
        self, channel_id: str, idle_timeout: float | None = None
    ) -> AsyncIterator[str | None]:
        """Yield frames queued for one channel until it is closed.

        Parameters
        ----------
        channel_id : str
            Channel to read from.
        idle_timeout : float | None
            If set, None is yielded whenever no frame arrived for that many
            seconds.
        """
        pass

    @abstractmethod
    async def close_channel(self, channel_id: str) -> None:
        """End the subscription of ``channel_id`` and drop pending frames."""
        pass
