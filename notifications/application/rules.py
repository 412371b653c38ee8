import uuid
from datetime import UTC, datetime
from typing import AsyncGenerator, List

from loguru import logger

from core.infrastructure.factory import get_data_sanitizer

from ..domain.entities import (
    Notification,
    NotificationPage,
    NotificationPreferences,
    NotificationSender,
    NotificationType,
)
from ..domain.protocol import (
    CONNECTED_COMMENT,
    HEARTBEAT_COMMENT,
    encode_comment,
    encode_notification_frame,
    encode_unread_count_frame,
)
from .ports import (
    NotificationChannelManager,
    NotificationPublisher,
    NotificationRepository,
)


class EstablishSSEConnectionRule:
    """Business logic for streaming a user's notifications over SSE."""

    def __init__(
        self,
        user_id: str,
        publisher: NotificationPublisher,
        channel_manager: NotificationChannelManager,
        notification_repository: NotificationRepository,
        heartbeat_seconds: float = 30.0,
    ) -> None:
        self.user_id = user_id
        self.publisher = publisher
        self.channel_manager = channel_manager
        self.notification_repository = notification_repository
        self.heartbeat_seconds = heartbeat_seconds
        self.channel_id = str(uuid.uuid4())

    async def execute(self) -> AsyncGenerator[str, None]:
        """Execute the SSE connection establishment.

        Registers a channel, greets the client, sends the current unread
        count and then relays queued frames. A heartbeat comment is sent
        whenever the channel stays idle for ``heartbeat_seconds``.

        Yields
        ------
        str
            SSE-encoded frames
        """
        sanitizer = get_data_sanitizer()

        await self.channel_manager.register_channel(
            user_id=self.user_id,
            channel_id=self.channel_id,
        )
        logger.info(
            f"Established SSE connection for user {self.user_id} with channel {self.channel_id}"
        )

        try:
            yield encode_comment(CONNECTED_COMMENT)

            unread_count = await self.notification_repository.count_unread(self.user_id)
            yield encode_unread_count_frame(unread_count)

            async for frame in self.publisher.subscribe(
                self.channel_id, idle_timeout=self.heartbeat_seconds
            ):
                if frame is None:
                    yield encode_comment(HEARTBEAT_COMMENT)
                    continue

                logger.debug(sanitizer.sanitize_for_logging(frame.strip()))
                yield frame

        finally:
            await self.channel_manager.unregister_channel(self.channel_id)
            await self.publisher.close_channel(self.channel_id)
            logger.info(f"Closed SSE connection for user {self.user_id}")


class CreateNotificationRule:
    """Business logic for creating and pushing a notification."""

    def __init__(
        self,
        receiver_id: str,
        notification_type: NotificationType,
        content: str,
        notification_repository: NotificationRepository,
        publisher: NotificationPublisher,
        sender: NotificationSender | None = None,
        link_url: str | None = None,
    ) -> None:
        self.receiver_id = receiver_id
        self.notification_type = notification_type
        self.content = content
        self.sender = sender
        self.link_url = link_url
        self.notification_repository = notification_repository
        self.publisher = publisher

    async def execute(self) -> Notification | None:
        """Execute the notification creation process.

        Users never notify themselves; such requests are ignored.

        Returns
        -------
        Notification | None
            Created notification, or None if nothing was created
        """
        if self.sender is not None and self.sender.id == self.receiver_id:
            logger.debug(f"Skipping self-notification for user {self.receiver_id}")
            return None

        notification = await self.notification_repository.create(
            self.receiver_id,
            Notification(
                id=str(uuid.uuid4()),
                type=self.notification_type,
                content=self.content,
                created_at=datetime.now(tz=UTC),
                sender=self.sender,
                link_url=self.link_url,
            ),
        )

        delivered = await self.publisher.publish(
            self.receiver_id, encode_notification_frame(notification)
        )
        logger.info(
            f"Published notification {notification.id} to {delivered} stream(s) "
            f"of user {self.receiver_id}"
        )
        return notification


class GetUserNotificationsRule:
    """Business logic for retrieving user notifications."""

    def __init__(
        self,
        user_id: str,
        notification_repository: NotificationRepository,
        page: int = 1,
        limit: int = 20,
        unread_only: bool = False,
    ) -> None:
        self.user_id = user_id
        self.notification_repository = notification_repository
        self.page = page
        self.limit = limit
        self.unread_only = unread_only

    async def execute(self) -> NotificationPage:
        return await self.notification_repository.get_user_notifications(
            user_id=self.user_id,
            page=self.page,
            limit=self.limit,
            unread_only=self.unread_only,
        )


class MarkNotificationsReadRule:
    """Business logic for marking notifications as read.

    Pushes the resulting unread count to the user's open streams.
    """

    def __init__(
        self,
        user_id: str,
        notification_repository: NotificationRepository,
        publisher: NotificationPublisher,
        notification_ids: List[str] | None = None,
        mark_all: bool = False,
    ) -> None:
        self.user_id = user_id
        self.notification_repository = notification_repository
        self.publisher = publisher
        self.notification_ids = notification_ids
        self.mark_all = mark_all

    async def execute(self) -> int:
        """Execute the mark as read process.

        Returns
        -------
        int
            Number of notifications that changed state

        Raises
        ------
        ValueError
            If neither ids nor ``mark_all`` were given
        """
        if self.mark_all:
            changed = await self.notification_repository.mark_all_as_read(self.user_id)
        elif self.notification_ids:
            changed = await self.notification_repository.mark_as_read(
                self.user_id, self.notification_ids
            )
        else:
            raise ValueError("Either notification ids or mark_all is required")

        unread_count = await self.notification_repository.count_unread(self.user_id)
        await self.publisher.publish(self.user_id, encode_unread_count_frame(unread_count))
        logger.info(f"Marked {changed} notification(s) read for user {self.user_id}")
        return changed


class GetNotificationPreferencesRule:
    def __init__(self, user_id: str, notification_repository: NotificationRepository) -> None:
        self.user_id = user_id
        self.notification_repository = notification_repository

    async def execute(self) -> NotificationPreferences:
        preferences = await self.notification_repository.get_preferences(self.user_id)
        return preferences or NotificationPreferences.default()


class UpdateNotificationPreferencesRule:
    def __init__(
        self,
        user_id: str,
        preferences: NotificationPreferences,
        notification_repository: NotificationRepository,
    ) -> None:
        self.user_id = user_id
        self.preferences = preferences
        self.notification_repository = notification_repository

    async def execute(self) -> NotificationPreferences:
        saved = await self.notification_repository.save_preferences(
            self.user_id, self.preferences
        )
        logger.info(f"Updated notification preferences for user {self.user_id}")
        return saved
