from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List

import click
from loguru import logger
from pydantic import dataclasses

from ..application.hub import NotificationHub
from ..domain.entities import HubEvent, Notification, NotificationType, UnreadCount

TOAST_ICONS: Dict[NotificationType, str] = {
    NotificationType.FOLLOW: "👤",
    NotificationType.LIKE: "❤️",
    NotificationType.COMMENT: "💬",
    NotificationType.MESSAGE: "✉️",
    NotificationType.SYSTEM: "🔔",
}
DEFAULT_TOAST_ICON = "📢"


class _HubConsumer(ABC):
    """Base for consumers that hold hub subscriptions until detached."""

    def __init__(self, hub: NotificationHub) -> None:
        self.hub = hub
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def attached(self) -> bool:
        return bool(self._unsubscribers)

    @abstractmethod
    def attach(self) -> "_HubConsumer":
        """Subscribe to the hub; calling it again while attached is a no-op."""
        pass

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()


class UnreadBadge(_HubConsumer):
    """Unread counter shown next to the notification bell.

    Re-renders whenever the hub's unread count may have changed.

    Parameters
    ----------
    hub : NotificationHub
        Source of unread-count and notification events.
    render : Callable[[str], None] | None
        Receives the badge label on every change.
    """

    def __init__(
        self, hub: NotificationHub, render: Callable[[str], None] | None = None
    ) -> None:
        super().__init__(hub)
        self._render = render

    def attach(self) -> "UnreadBadge":
        if not self.attached:
            self._unsubscribers = [
                self.hub.subscribe(HubEvent.UNREAD_COUNT, self._on_unread_count),
                self.hub.subscribe(HubEvent.NOTIFICATION, self._on_notification),
            ]
        return self

    @property
    def count(self) -> int:
        return self.hub.unread_count

    @property
    def label(self) -> str:
        """Badge text: empty when nothing is unread, capped at ``99+``."""
        if self.count <= 0:
            return ""
        return "99+" if self.count > 99 else str(self.count)

    def _on_unread_count(self, unread: UnreadCount) -> None:
        self._refresh()

    def _on_notification(self, notification: Notification) -> None:
        self._refresh()

    def _refresh(self) -> None:
        if self._render is not None:
            self._render(self.label)


@dataclasses.dataclass(frozen=True)
class Toast:
    """Transient in-app message for a new notification."""

    message: str
    icon: str
    action_label: str | None = None
    action_url: str | None = None
    duration_seconds: float = 5.0


def build_toast(notification: Notification) -> Toast:
    """Build the toast for ``notification``, prefixed with the sender's name."""
    message = notification.content
    if notification.sender is not None:
        message = f"{notification.sender.display_name} {notification.content}"

    return Toast(
        message=message,
        icon=TOAST_ICONS.get(notification.type, DEFAULT_TOAST_ICON),
        action_label="View" if notification.link_url else None,
        action_url=notification.link_url,
    )


def echo_toast(toast: Toast) -> None:
    line = f"{toast.icon}  {toast.message}"
    if toast.action_url:
        line += click.style(f"  [{toast.action_label}: {toast.action_url}]", dim=True)
    click.echo(line)


class ToastPresenter(_HubConsumer):
    """Shows a toast for each new notification while in-app delivery is enabled."""

    def __init__(
        self, hub: NotificationHub, render: Callable[[Toast], None] | None = None
    ) -> None:
        super().__init__(hub)
        self._render = render or echo_toast

    def attach(self) -> "ToastPresenter":
        if not self.attached:
            self._unsubscribers = [
                self.hub.subscribe(HubEvent.NOTIFICATION, self.present)
            ]
        return self

    def present(self, notification: Notification) -> Toast | None:
        if not self.hub.get_preferences().in_app.enabled:
            return None

        toast = build_toast(notification)
        self._render(toast)
        return toast


class ActivityFeed(_HubConsumer):
    """Most recent notifications, newest first, without duplicates.

    Parameters
    ----------
    hub : NotificationHub
        Source of notification events and read-state calls.
    limit : int, default=5
        Maximum number of kept notifications.
    """

    def __init__(self, hub: NotificationHub, limit: int = 5) -> None:
        super().__init__(hub)
        self.limit = limit
        self._items: List[Notification] = []

    @property
    def items(self) -> List[Notification]:
        return list(self._items)

    def attach(self) -> "ActivityFeed":
        if not self.attached:
            self._unsubscribers = [
                self.hub.subscribe(HubEvent.NOTIFICATION, self._on_notification)
            ]
        return self

    async def load(self) -> List[Notification]:
        """Replace the feed with the first page from the backend."""
        page = await self.hub.fetch_notifications(page=1, limit=self.limit)
        self._items = page.notifications[: self.limit]
        return self.items

    def _on_notification(self, notification: Notification) -> None:
        others = [n for n in self._items if n.id != notification.id]
        self._items = [notification, *others][: self.limit]

    async def mark_as_read(self, notification_ids: Iterable[str] | str) -> None:
        """Mark notifications read, updating the feed and badge optimistically.

        The optimistic update is reverted when the backend call fails.

        Raises
        ------
        NotificationBackendError
            If the backend rejects the update.
        """
        ids = {notification_ids} if isinstance(notification_ids, str) else set(notification_ids)
        previous = self._items
        changed = sum(1 for n in previous if n.id in ids and not n.read)

        self._items = [n.as_read() if n.id in ids else n for n in previous]
        # The counter clamps at 0, so only the amount actually removed is restored.
        before = self.hub.unread.value
        applied = before - self.hub.unread.decrement(changed)

        try:
            await self.hub.mark_as_read(ids)
        except Exception:
            logger.warning(f"🟠 Reverting optimistic read state for {len(ids)} notification(s)")
            self._items = previous
            self.hub.unread.increment(applied)
            raise
