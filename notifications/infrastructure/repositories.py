import math
from typing import Dict, List

from loguru import logger

from ..application.ports import NotificationRepository
from ..domain.entities import (
    Notification,
    NotificationPage,
    NotificationPreferences,
    Pagination,
)


class InMemoryNotificationRepository(NotificationRepository):
    """Process-local notification store backing the reference push server.

    Notifications are kept per receiver; nothing survives a restart.
    """

    def __init__(self) -> None:
        self._notifications: Dict[str, List[Notification]] = {}
        self._preferences: Dict[str, NotificationPreferences] = {}

    async def create(self, receiver_id: str, notification: Notification) -> Notification:
        """Store a notification for ``receiver_id``.

        Parameters
        ----------
        receiver_id : str
            User the notification is addressed to.
        notification : Notification
            Fully built notification.

        Returns
        -------
        Notification
            The stored notification.

        Raises
        ------
        ValueError
            If the receiver already has a notification with the same id.
        """
        inbox = self._notifications.setdefault(receiver_id, [])
        if any(n.id == notification.id for n in inbox):
            raise ValueError(f"Notification {notification.id} already exists")

        inbox.append(notification)
        logger.debug(f"Stored notification {notification.id} for user {receiver_id}")
        return notification

    async def get_user_notifications(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
    ) -> NotificationPage:
        """Retrieve one page of notifications for a user, newest first.

        Parameters
        ----------
        user_id : str
            Receiver whose notifications are listed.
        page : int
            1-based page number.
        limit : int
            Page size.
        unread_only : bool
            If True, only unread notifications are listed.

        Returns
        -------
        NotificationPage
            Requested page with the unread total and pagination data.
        """
        notifications = sorted(
            self._notifications.get(user_id, []),
            key=lambda n: n.created_at,
            reverse=True,
        )
        if unread_only:
            notifications = [n for n in notifications if not n.read]

        total_count = len(notifications)
        offset = (page - 1) * limit

        return NotificationPage(
            notifications=notifications[offset : offset + limit],
            unread_count=await self.count_unread(user_id),
            pagination=Pagination(
                page=page,
                limit=limit,
                total_count=total_count,
                total_pages=math.ceil(total_count / limit) if limit else 0,
            ),
        )

    async def count_unread(self, user_id: str) -> int:
        return sum(1 for n in self._notifications.get(user_id, []) if not n.read)

    async def mark_as_read(self, user_id: str, notification_ids: List[str]) -> int:
        wanted = set(notification_ids)
        return self._mark(user_id, lambda n: n.id in wanted)

    async def mark_all_as_read(self, user_id: str) -> int:
        return self._mark(user_id, lambda n: True)

    def _mark(self, user_id: str, predicate) -> int:
        inbox = self._notifications.get(user_id, [])
        changed = 0
        for index, notification in enumerate(inbox):
            if not notification.read and predicate(notification):
                inbox[index] = notification.as_read()
                changed += 1
        return changed

    async def get_preferences(self, user_id: str) -> NotificationPreferences | None:
        return self._preferences.get(user_id)

    async def save_preferences(
        self, user_id: str, preferences: NotificationPreferences
    ) -> NotificationPreferences:
        self._preferences[user_id] = preferences
        return preferences
