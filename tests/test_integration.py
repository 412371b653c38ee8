import asyncio

import pytest

from conftest import FakeBackend
from notifications.application.hub import HubOptions, NotificationHub
from notifications.application.ports import StreamSession, StreamTransport
from notifications.application.rules import (
    CreateNotificationRule,
    EstablishSSEConnectionRule,
    MarkNotificationsReadRule,
)
from notifications.domain.entities import NotificationSender, NotificationType
from notifications.infrastructure.repositories import InMemoryNotificationRepository
from notifications.infrastructure.services import (
    InMemoryNotificationChannelManager,
    InMemoryNotificationPublisher,
)
from notifications.infrastructure.sse import SSEDecoder
from notifications.infrastructure.storage import InMemoryStorage


async def eventually(predicate, rounds: int = 1000) -> bool:
    for _ in range(rounds):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()


class RuleSession(StreamSession):
    """Feeds the server's encoded frames through the client-side decoder."""

    def __init__(self, stream) -> None:
        self._stream = stream

    async def frames(self):
        decoder = SSEDecoder()
        async for chunk in self._stream:
            for line in chunk.split("\n"):
                frame = decoder.feed(line)
                if frame is not None:
                    yield frame

    async def close(self) -> None:
        await self._stream.aclose()


class InProcessTransport(StreamTransport):
    def __init__(self, server, heartbeat_seconds: float = 30.0) -> None:
        self.server = server
        self.heartbeat_seconds = heartbeat_seconds

    async def open(self, user_id: str) -> StreamSession:
        repository, channel_manager, publisher = self.server
        rule = EstablishSSEConnectionRule(
            user_id,
            publisher,
            channel_manager,
            repository,
            heartbeat_seconds=self.heartbeat_seconds,
        )
        return RuleSession(rule.execute())


@pytest.fixture
def server():
    channel_manager = InMemoryNotificationChannelManager()
    return (
        InMemoryNotificationRepository(),
        channel_manager,
        InMemoryNotificationPublisher(channel_manager),
    )


def build_hub(server, heartbeat_seconds: float = 30.0) -> NotificationHub:
    return NotificationHub(
        transport=InProcessTransport(server, heartbeat_seconds),
        backend=FakeBackend(),
        storage=InMemoryStorage(),
        options=HubOptions(reconcile_unread_on_open=False),
    )


async def notify(server, receiver_id="bob", sender_id="alice"):
    repository, _, publisher = server
    return await CreateNotificationRule(
        receiver_id=receiver_id,
        notification_type=NotificationType.COMMENT,
        content="commented on your asset",
        sender=NotificationSender(id=sender_id, name="Alice"),
        link_url="/assets/7",
        notification_repository=repository,
        publisher=publisher,
    ).execute()


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_server_frames_drive_hub_state(self, server):
        repository, channel_manager, publisher = server
        await notify(server)
        received, comments = [], []

        async with build_hub(server) as hub:
            hub.subscribe("notification", received.append)
            hub.subscribe("notification:comment", comments.append)
            await hub.initialize("bob")

            assert await eventually(lambda: hub.unread_count == 1)
            assert hub.connection.is_open

            created = await notify(server)
            assert await eventually(lambda: len(received) == 1)
            assert received[0].id == created.id
            assert received[0].sender.name == "Alice"
            assert comments == received
            assert hub.unread_count == 2

            await MarkNotificationsReadRule(
                user_id="bob",
                notification_repository=repository,
                publisher=publisher,
                mark_all=True,
            ).execute()
            assert await eventually(lambda: hub.unread_count == 0)

        assert await channel_manager.get_user_channels("bob") == []

    @pytest.mark.asyncio
    async def test_other_users_notifications_are_not_delivered(self, server):
        received = []

        async with build_hub(server) as hub:
            hub.subscribe("notification", received.append)
            await hub.initialize("bob")
            assert await eventually(lambda: hub.connection.is_open)

            await notify(server, receiver_id="carol")
            await notify(server, receiver_id="bob", sender_id="bob")
            await asyncio.sleep(0.01)

            assert received == []
            assert hub.unread_count == 0

    @pytest.mark.asyncio
    async def test_server_heartbeats_keep_stream_alive(self, server):
        async with build_hub(server, heartbeat_seconds=0.01) as hub:
            await hub.initialize("bob")
            assert await eventually(lambda: hub.connection.is_open)

            await asyncio.sleep(0.05)

            assert hub.connection.is_open
            assert hub.connection.reconnect_attempts == 0
            assert hub.unread_count == 0
