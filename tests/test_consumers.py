import json

import pytest

from conftest import notification_frame, notification_payload, preferences_with, settle, store_preferences
from notifications.domain.entities import Notification, NotificationPage, NotificationType
from notifications.domain.exceptions import NotificationBackendError
from notifications.presentation import ActivityFeed, ToastPresenter, UnreadBadge
from notifications.presentation.consumers import DEFAULT_TOAST_ICON, _HubConsumer, build_toast


def make_notification(notification_id="n1", **overrides) -> Notification:
    return Notification.model_validate(notification_payload(notification_id, **overrides))


async def start(hub, user_id="u1"):
    await hub.initialize(user_id)
    await settle()


class TestUnreadBadge:
    @pytest.mark.asyncio
    async def test_label_follows_unread_count(self, hub, transport):
        labels = []
        badge = UnreadBadge(hub, render=labels.append).attach()
        await start(hub)

        assert badge.label == ""

        transport.latest.push_data(notification_frame("n1"))
        transport.latest.push_data(json.dumps({"type": "unread_count", "count": 120}))
        transport.latest.push_data(json.dumps({"type": "unread_count", "count": 7}))
        await settle()

        assert labels == ["1", "99+", "7"]
        assert badge.count == 7

    @pytest.mark.asyncio
    async def test_detach_stops_rendering(self, hub, transport):
        labels = []
        badge = UnreadBadge(hub, render=labels.append).attach()
        badge.attach()
        assert hub.subscriber_count("unread_count") == 1

        badge.detach()
        await start(hub)
        transport.latest.push_data(notification_frame("n1"))
        await settle()

        assert not badge.attached
        assert labels == []
        assert badge.label == "1"


class TestToasts:
    def test_toast_prefixes_sender_and_links(self):
        toast = build_toast(make_notification(type="LIKE", content="liked your asset"))

        assert toast.message == "Alice liked your asset"
        assert toast.icon == "❤️"
        assert toast.action_label == "View"
        assert toast.action_url == "/u/alice"
        assert toast.duration_seconds == 5

    def test_toast_without_sender_or_link(self):
        toast = build_toast(
            make_notification(type="SYSTEM", content="Maintenance tonight", sender=None, linkUrl=None)
        )

        assert toast.message == "Maintenance tonight"
        assert toast.icon == "🔔"
        assert toast.action_label is None

    def test_sender_without_name_uses_username(self):
        toast = build_toast(make_notification(sender={"id": "u9", "username": "bob"}))
        assert toast.message.startswith("bob ")

    def test_every_type_has_an_icon(self):
        for notification_type in NotificationType:
            assert build_toast(make_notification(type=notification_type.value)).icon != DEFAULT_TOAST_ICON

    @pytest.mark.asyncio
    async def test_presenter_renders_new_notifications(self, hub, transport):
        toasts = []
        ToastPresenter(hub, render=toasts.append).attach()
        await start(hub)

        transport.latest.push_data(notification_frame("n1", "COMMENT", content="commented"))
        await settle()

        assert [t.message for t in toasts] == ["Alice commented"]

    @pytest.mark.asyncio
    async def test_presenter_silent_when_in_app_disabled(self, hub, storage):
        toasts = []
        presenter = ToastPresenter(hub, render=toasts.append)
        store_preferences(storage, preferences_with(enabled=False))

        assert presenter.present(make_notification()) is None
        assert toasts == []


class TestActivityFeed:
    @pytest.mark.asyncio
    async def test_load_keeps_first_page(self, hub, backend):
        backend.page = NotificationPage(
            notifications=[make_notification(f"n{i}") for i in range(3)]
        )
        feed = ActivityFeed(hub, limit=2)

        items = await feed.load()

        assert [n.id for n in items] == ["n0", "n1"]
        assert backend.fetch_calls == [(1, 2, False)]

    @pytest.mark.asyncio
    async def test_live_notifications_prepend_without_duplicates(self, hub, transport):
        feed = ActivityFeed(hub, limit=3).attach()
        await start(hub)

        for notification_id in ["a", "b", "c", "d"]:
            transport.latest.push_data(notification_frame(notification_id))
        await settle()

        assert [n.id for n in feed.items] == ["d", "c", "b"]

        feed._on_notification(make_notification("b"))
        assert [n.id for n in feed.items] == ["b", "d", "c"]

    @pytest.mark.asyncio
    async def test_mark_as_read_is_optimistic(self, hub, transport, backend):
        feed = ActivityFeed(hub).attach()
        await start(hub)
        transport.latest.push_data(notification_frame("a"))
        transport.latest.push_data(notification_frame("b"))
        await settle()

        await feed.mark_as_read(["a"])

        assert backend.marked == [["a"]]
        assert hub.unread_count == 1
        assert {n.id: n.read for n in feed.items} == {"a": True, "b": False}

    @pytest.mark.asyncio
    async def test_mark_as_read_reverts_on_failure(self, hub, transport, backend):
        feed = ActivityFeed(hub).attach()
        await start(hub)
        transport.latest.push_data(notification_frame("a"))
        await settle()
        backend.errors["mark_as_read"] = NotificationBackendError("unavailable", 503)

        with pytest.raises(NotificationBackendError):
            await feed.mark_as_read(["a"])

        assert hub.unread_count == 1
        assert not feed.items[0].read

    @pytest.mark.asyncio
    async def test_failed_mark_as_read_keeps_clamped_count(self, hub, backend):
        backend.page = NotificationPage(
            notifications=[make_notification(f"n{i}") for i in range(3)]
        )
        feed = ActivityFeed(hub)
        await feed.load()
        assert hub.unread_count == 0
        backend.errors["mark_as_read"] = NotificationBackendError("unavailable", 503)

        with pytest.raises(NotificationBackendError):
            await feed.mark_as_read(["n0", "n1", "n2"])

        assert hub.unread_count == 0
        assert not any(n.read for n in feed.items)

    @pytest.mark.asyncio
    async def test_mark_single_id_as_read(self, hub, transport, backend):
        feed = ActivityFeed(hub).attach()
        await start(hub)
        transport.latest.push_data(notification_frame("abc"))
        await settle()

        await feed.mark_as_read("abc")

        assert backend.marked == [["abc"]]
        assert feed.items[0].read
        assert hub.unread_count == 0


class TestHubConsumerBase:
    @pytest.mark.asyncio
    async def test_consumer_base_is_abstract(self, hub):
        with pytest.raises(TypeError):
            _HubConsumer(hub)
