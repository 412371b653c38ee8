import asyncio
import json
from collections import deque
from datetime import UTC, datetime
from typing import Any, Callable, Dict, List

import pytest
import pytest_asyncio

from notifications.application.connection import StreamConnection
from notifications.application.hub import HubOptions, NotificationHub
from notifications.application.ports import (
    AudioPlayback,
    DesktopNotificationHandle,
    DesktopNotifications,
    NotificationBackend,
    StreamSession,
    StreamTransport,
)
from notifications.domain.entities import (
    NotificationPage,
    NotificationPreferences,
    PermissionState,
)
from notifications.domain.exceptions import NotificationBackendError
from notifications.domain.protocol import StreamFrame
from notifications.infrastructure.storage import InMemoryStorage

_END = object()


async def settle(rounds: int = 50) -> None:
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def notification_payload(notification_id="n1", type_="FOLLOW", **overrides) -> Dict[str, Any]:
    payload = {
        "id": notification_id,
        "type": type_,
        "content": "started following you",
        "createdAt": "2024-05-01T12:00:00Z",
        "sender": {"id": "u2", "name": "Alice", "username": "alice", "image": None},
        "linkUrl": "/u/alice",
        "read": False,
    }
    payload.update(overrides)
    return payload


def notification_frame(notification_id="n1", type_="FOLLOW", **overrides) -> str:
    return json.dumps(
        {"type": "notification", "data": notification_payload(notification_id, type_, **overrides)}
    )


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class ManualTimer:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Timer scheduling driven explicitly by `advance`."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.timers: List[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.clock.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.clock.now + seconds
        while True:
            due = sorted((t for t in self.pending if t.when <= target), key=lambda t: t.when)
            if not due:
                break
            timer = due[0]
            self.clock.now = timer.when
            timer.fired = True
            timer.callback()
        self.clock.now = target


class FakeSession(StreamSession):
    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, frame: StreamFrame) -> None:
        self._queue.put_nowait(frame)

    def push_data(self, data: str) -> None:
        self.push(StreamFrame(data=data))

    def push_comment(self, text: str = "heartbeat") -> None:
        self.push(StreamFrame(comment=text))

    def end(self) -> None:
        self._queue.put_nowait(_END)

    def fail(self, error: Exception) -> None:
        self._queue.put_nowait(error)

    async def frames(self):
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True


class FakeTransport(StreamTransport):
    def __init__(self) -> None:
        self.sessions: List[FakeSession] = []
        self.open_calls: List[str] = []
        self.failures: deque = deque()

    async def open(self, user_id: str) -> StreamSession:
        self.open_calls.append(user_id)
        if self.failures:
            raise self.failures.popleft()
        session = FakeSession(user_id)
        self.sessions.append(session)
        return session

    @property
    def latest(self) -> FakeSession:
        return self.sessions[-1]

    @property
    def live_sessions(self) -> List[FakeSession]:
        return [s for s in self.sessions if not s.closed]


class FakeBackend(NotificationBackend):
    def __init__(self) -> None:
        self.user_id = None
        self.unread_count = 0
        self.page = NotificationPage()
        self.fetch_calls: List[tuple] = []
        self.marked: List[List[str]] = []
        self.marked_all = 0
        self.saved: List[NotificationPreferences] = []
        self.preferences = NotificationPreferences.default()
        self.errors: Dict[str, Exception] = {}
        self.closed = False

    def _maybe_fail(self, name: str) -> None:
        if name in self.errors:
            raise self.errors[name]

    def bind_user(self, user_id):
        self.user_id = user_id

    async def fetch_notifications(self, page=1, limit=20, unread_only=False):
        self.fetch_calls.append((page, limit, unread_only))
        self._maybe_fail("fetch_notifications")
        return self.page.model_copy(update={"unread_count": self.unread_count})

    async def mark_as_read(self, notification_ids):
        self._maybe_fail("mark_as_read")
        self.marked.append(list(notification_ids))

    async def mark_all_as_read(self):
        self._maybe_fail("mark_all_as_read")
        self.marked_all += 1

    async def get_preferences(self):
        self._maybe_fail("get_preferences")
        return self.preferences

    async def save_preferences(self, preferences):
        self._maybe_fail("save_preferences")
        self.saved.append(preferences)
        self.preferences = preferences
        return preferences

    async def aclose(self):
        self.closed = True


class FakeHandle(DesktopNotificationHandle):
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeDesktop(DesktopNotifications):
    def __init__(self, permission=PermissionState.GRANTED, grant_on_request=True) -> None:
        self._permission = permission
        self.grant_on_request = grant_on_request
        self.permission_requests = 0
        self.shown: List[dict] = []
        self.handles: List[FakeHandle] = []
        self.error: Exception | None = None

    @property
    def available(self) -> bool:
        return True

    def permission(self) -> PermissionState:
        return self._permission

    async def request_permission(self) -> PermissionState:
        self.permission_requests += 1
        self._permission = (
            PermissionState.GRANTED if self.grant_on_request else PermissionState.DENIED
        )
        return self._permission

    def show(self, title, *, body, tag, link_url=None):
        if self.error is not None:
            raise self.error
        self.shown.append({"title": title, "body": body, "tag": tag, "link_url": link_url})
        handle = FakeHandle()
        self.handles.append(handle)
        return handle


class FakeAudio(AudioPlayback):
    def __init__(self) -> None:
        self.plays: List[tuple] = []
        self.error: Exception | None = None

    @property
    def available(self) -> bool:
        return True

    async def play(self, source, volume):
        if self.error is not None:
            raise self.error
        self.plays.append((source, volume))


def store_preferences(storage, preferences: NotificationPreferences) -> None:
    storage.set_item("notification-preferences", preferences.model_dump_json(by_alias=True))


def preferences_with(**in_app) -> NotificationPreferences:
    defaults = NotificationPreferences.default()
    return defaults.model_copy(update={"in_app": defaults.in_app.model_copy(update=in_app)})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def desktop():
    return FakeDesktop()


@pytest.fixture
def audio():
    return FakeAudio()


@pytest.fixture
def hub_options():
    return HubOptions(reconcile_unread_on_open=False)


@pytest_asyncio.fixture
async def hub(transport, backend, storage, desktop, audio, scheduler, clock, hub_options):
    hub = NotificationHub(
        transport=transport,
        backend=backend,
        storage=storage,
        desktop=desktop,
        audio=audio,
        options=hub_options,
        call_later=scheduler.call_later,
        clock=clock,
    )
    yield hub
    await hub.dispose()


@pytest_asyncio.fixture
async def connection(transport, scheduler, clock):
    events: Dict[str, list] = {"open": [], "message": [], "close": []}
    connection = StreamConnection(
        transport,
        on_open=lambda: events["open"].append(True),
        on_message=events["message"].append,
        on_close=events["close"].append,
        call_later=scheduler.call_later,
        clock=clock,
    )
    connection.events = events
    yield connection
    await connection.disconnect()


@pytest.fixture
def created_at():
    return datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
