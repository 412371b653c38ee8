import asyncio
from datetime import UTC, datetime
from typing import AsyncGenerator, Dict, List, Set

from loguru import logger

from ..application.ports import NotificationChannelManager, NotificationPublisher

_CLOSED = object()


class InMemoryNotificationChannelManager(NotificationChannelManager):
    """Tracks which SSE channels are open for which user."""

    def __init__(self) -> None:
        self._channel_owner: Dict[str, str] = {}
        self._user_channels: Dict[str, Set[str]] = {}
        self._opened_at: Dict[str, datetime] = {}

    async def register_channel(self, user_id: str, channel_id: str) -> None:
        """Register a new notification channel.

        Parameters
        ----------
        user_id : str
            Owner of the channel.
        channel_id : str
            Unique channel identifier.
        """
        self._channel_owner[channel_id] = user_id
        self._user_channels.setdefault(user_id, set()).add(channel_id)
        self._opened_at[channel_id] = datetime.now(tz=UTC)
        logger.info(f"Registered channel {channel_id} for user {user_id}")

    async def unregister_channel(self, channel_id: str) -> bool:
        """Unregister a notification channel.

        Returns
        -------
        bool
            True if the channel was registered.
        """
        user_id = self._channel_owner.pop(channel_id, None)
        self._opened_at.pop(channel_id, None)
        if user_id is None:
            return False

        channels = self._user_channels.get(user_id, set())
        channels.discard(channel_id)
        if not channels:
            self._user_channels.pop(user_id, None)

        logger.info(f"Unregistered channel {channel_id}")
        return True

    async def get_user_channels(self, user_id: str) -> List[str]:
        return sorted(
            self._user_channels.get(user_id, ()),
            key=lambda channel_id: self._opened_at[channel_id],
        )


class InMemoryNotificationPublisher(NotificationPublisher):
    """Queue-per-channel fan-out of encoded SSE frames."""

    def __init__(self, channel_manager: NotificationChannelManager) -> None:
        self.channel_manager = channel_manager
        self._queues: Dict[str, asyncio.Queue] = {}

    def _queue(self, channel_id: str) -> asyncio.Queue:
        return self._queues.setdefault(channel_id, asyncio.Queue())

    async def publish(self, user_id: str, frame: str) -> int:
        """Queue an encoded frame on every open channel of a user.

        Parameters
        ----------
        user_id : str
            Receiver of the frame.
        frame : str
            SSE-encoded frame, terminator included.

        Returns
        -------
        int
            Number of channels the frame was queued on.
        """
        channels = await self.channel_manager.get_user_channels(user_id)
        for channel_id in channels:
            self._queue(channel_id).put_nowait(frame)

        logger.debug(f"Published frame to {len(channels)} channel(s) of user {user_id}")
        return len(channels)

    async def subscribe(
        self, channel_id: str, idle_timeout: float | None = None
    ) -> AsyncGenerator[str | None, None]:
        """Yield frames queued for a channel.

        Parameters
        ----------
        channel_id : str
            Channel to read from.
        idle_timeout : float | None
            Yield None after this many idle seconds.

        Yields
        ------
        str | None
            Encoded frame, or None after an idle period.
        """
        queue = self._queue(channel_id)
        try:
            while True:
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=idle_timeout)
                except TimeoutError:
                    yield None
                    continue

                if item is _CLOSED:
                    return
                yield item
        finally:
            self._queues.pop(channel_id, None)

    async def close_channel(self, channel_id: str) -> None:
        queue = self._queues.get(channel_id)
        if queue is not None:
            queue.put_nowait(_CLOSED)
