import json

import pytest
from fastapi.testclient import TestClient

from main import create_app
from notifications.application.rules import (
    CreateNotificationRule,
    EstablishSSEConnectionRule,
    GetNotificationPreferencesRule,
    MarkNotificationsReadRule,
)
from notifications.domain.entities import NotificationSender, NotificationType
from notifications.infrastructure.factory import reset_notification_services
from notifications.infrastructure.repositories import InMemoryNotificationRepository
from notifications.infrastructure.services import (
    InMemoryNotificationChannelManager,
    InMemoryNotificationPublisher,
)

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


@pytest.fixture
def client():
    reset_notification_services()
    yield TestClient(create_app())
    reset_notification_services()


def create(client, receiver="bob", type_="LIKE", headers=ALICE, **extra):
    body = {
        "receiverId": receiver,
        "type": type_,
        "content": "liked your asset",
        "linkUrl": "/assets/1",
        "senderName": "Alice",
        **extra,
    }
    return client.post("/api/notifications", json=body, headers=headers)


class TestNotificationRoutes:
    def test_missing_user_header_is_unauthorized(self, client):
        response = client.get("/api/notifications")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Authentication required"

    def test_create_then_list(self, client):
        created = create(client)
        assert created.status_code == 201
        data = created.json()["data"]
        assert data["type"] == "LIKE"
        assert data["sender"] == {"id": "alice", "name": "Alice", "username": None, "image": None}
        assert data["linkUrl"] == "/assets/1"

        listed = client.get("/api/notifications", headers=BOB)

        assert listed.status_code == 200
        page = listed.json()["data"]
        assert page["unreadCount"] == 1
        assert [n["id"] for n in page["notifications"]] == [data["id"]]
        assert page["pagination"] == {"page": 1, "limit": 20, "totalCount": 1, "totalPages": 1}

    def test_self_notification_is_ignored(self, client):
        response = create(client, receiver="alice")

        assert response.status_code == 201
        assert response.json()["data"] is None
        assert client.get("/api/notifications", headers=ALICE).json()["data"]["unreadCount"] == 0

    def test_system_notification_has_no_sender(self, client):
        response = create(client, receiver="alice", type_="SYSTEM")

        assert response.json()["data"]["sender"] is None

    def test_pagination_and_unread_filter(self, client):
        for _ in range(3):
            create(client)
        first_id = client.get("/api/notifications", headers=BOB).json()["data"]["notifications"][0]["id"]
        client.patch("/api/notifications", json={"ids": [first_id]}, headers=BOB)

        page = client.get(
            "/api/notifications", params={"page": 1, "limit": 1, "unreadOnly": "true"}, headers=BOB
        ).json()["data"]

        assert page["unreadCount"] == 2
        assert page["pagination"]["totalCount"] == 2
        assert page["pagination"]["totalPages"] == 2
        assert len(page["notifications"]) == 1

    def test_mark_selected_as_read(self, client):
        notification_id = create(client).json()["data"]["id"]
        create(client)

        response = client.patch("/api/notifications", json={"ids": [notification_id]}, headers=BOB)

        assert response.status_code == 202
        assert response.json()["data"] == {"marked": 1, "unreadCount": 1}

    def test_mark_all_as_read(self, client):
        create(client)
        create(client)

        response = client.post("/api/notifications/mark-all-read", headers=BOB)
        assert response.json()["data"] == {"marked": 2, "unreadCount": 0}

        response = client.patch("/api/notifications", json={"all": True}, headers=BOB)
        assert response.json()["data"] == {"marked": 0, "unreadCount": 0}

    def test_mark_read_requires_target(self, client):
        response = client.patch("/api/notifications", json={}, headers=BOB)

        assert response.status_code == 422
        assert "Either ids or all is required" in response.json()["errors"]["detail"]

    def test_invalid_page_size(self, client):
        response = client.get("/api/notifications", params={"limit": 0}, headers=BOB)
        assert response.status_code == 422

    def test_preferences_default_and_update(self, client):
        defaults = client.get("/api/notifications/preferences", headers=BOB).json()["data"]
        assert defaults["inApp"] == {"enabled": True, "sound": False, "desktop": True}

        updated = client.put(
            "/api/notifications/preferences",
            json={**defaults, "inApp": {"enabled": True, "sound": True, "desktop": False}},
            headers=BOB,
        )
        assert updated.status_code == 202

        stored = client.get("/api/notifications/preferences", headers=BOB).json()["data"]
        assert stored["inApp"] == {"enabled": True, "sound": True, "desktop": False}
        assert client.get("/api/notifications/preferences", headers=ALICE).json()["data"] == defaults

    def test_invalid_preferences_rejected(self, client):
        response = client.put(
            "/api/notifications/preferences",
            json={"email": {"frequency": "hourly"}},
            headers=BOB,
        )
        assert response.status_code == 422


@pytest.fixture
def server_parts():
    repository = InMemoryNotificationRepository()
    channel_manager = InMemoryNotificationChannelManager()
    publisher = InMemoryNotificationPublisher(channel_manager)
    return repository, channel_manager, publisher


class TestServerRules:
    @pytest.mark.asyncio
    async def test_stream_greets_and_relays(self, server_parts):
        repository, channel_manager, publisher = server_parts
        rule = EstablishSSEConnectionRule("bob", publisher, channel_manager, repository)
        stream = rule.execute()

        assert await anext(stream) == ": connected\n\n"
        assert await anext(stream) == 'data: {"type": "unread_count", "count": 0}\n\n'
        assert await channel_manager.get_user_channels("bob") == [rule.channel_id]

        notification = await CreateNotificationRule(
            receiver_id="bob",
            notification_type=NotificationType.FOLLOW,
            content="started following you",
            sender=NotificationSender(id="alice", name="Alice"),
            notification_repository=repository,
            publisher=publisher,
        ).execute()

        frame = await anext(stream)
        payload = json.loads(frame[len("data: "):])
        assert payload["type"] == "notification"
        assert payload["data"]["id"] == notification.id

        await MarkNotificationsReadRule(
            user_id="bob",
            notification_repository=repository,
            publisher=publisher,
            mark_all=True,
        ).execute()
        assert await anext(stream) == 'data: {"type": "unread_count", "count": 0}\n\n'

        await stream.aclose()
        assert await channel_manager.get_user_channels("bob") == []

    @pytest.mark.asyncio
    async def test_stream_sends_heartbeat_when_idle(self, server_parts):
        repository, channel_manager, publisher = server_parts
        rule = EstablishSSEConnectionRule(
            "bob", publisher, channel_manager, repository, heartbeat_seconds=0.01
        )
        stream = rule.execute()
        await anext(stream)
        await anext(stream)

        assert await anext(stream) == ": heartbeat\n\n"
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_self_notification_not_created(self, server_parts):
        repository, channel_manager, publisher = server_parts

        result = await CreateNotificationRule(
            receiver_id="alice",
            notification_type=NotificationType.LIKE,
            content="liked your asset",
            sender=NotificationSender(id="alice"),
            notification_repository=repository,
            publisher=publisher,
        ).execute()

        assert result is None
        assert await repository.count_unread("alice") == 0

    @pytest.mark.asyncio
    async def test_publish_reaches_every_open_channel(self, server_parts):
        _, channel_manager, publisher = server_parts
        await channel_manager.register_channel("bob", "c1")
        await channel_manager.register_channel("bob", "c2")
        await channel_manager.register_channel("carol", "c3")

        assert await publisher.publish("bob", ": heartbeat\n\n") == 2
        assert await publisher.publish("dave", ": heartbeat\n\n") == 0

    @pytest.mark.asyncio
    async def test_mark_read_requires_target(self, server_parts):
        repository, _, publisher = server_parts
        rule = MarkNotificationsReadRule("bob", repository, publisher)

        with pytest.raises(ValueError):
            await rule.execute()

    @pytest.mark.asyncio
    async def test_preferences_default_when_unset(self, server_parts):
        repository, _, _ = server_parts
        preferences = await GetNotificationPreferencesRule("bob", repository).execute()
        assert preferences.in_app.enabled
