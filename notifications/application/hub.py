import asyncio
from collections import deque
from typing import Any, Callable, Deque, Hashable, Iterable, List, Set

from loguru import logger
from pydantic import dataclasses

from config.base import Settings
from core.infrastructure.factory import get_data_sanitizer

from ..domain.entities import (
    HubEvent,
    Notification,
    NotificationPage,
    NotificationPreferences,
    NotificationType,
    PermissionState,
    UnreadCount,
    UnreadCounter,
)
from ..domain.exceptions import NotificationBackendError, StreamProtocolError
from ..domain.protocol import MessageKind, StreamFrame, decode_stream_message
from .connection import CallLater, ReconnectPolicy, StreamConnection, TimerHandle
from .ports import (
    AudioPlayback,
    DesktopNotifications,
    KeyValueStorage,
    NotificationBackend,
    StreamTransport,
)
from .registry import Subscriber, SubscriberRegistry


@dataclasses.dataclass(frozen=True)
class HubOptions:
    """Tunables of a `NotificationHub`.

    Attributes
    ----------
    preferences_storage_key : str
        Local storage key holding the cached preferences.
    reconcile_unread_on_open : bool
        Re-fetch the unread count over REST whenever the stream opens.
    desktop_auto_close_seconds : float
        Delay before a desktop notification is dismissed.
    sound_source : str
        Sound played for new notifications.
    sound_volume : float
        Playback volume between 0 and 1.
    heartbeat_timeout : float
        Seconds of stream silence tolerated before reconnecting.
    reconnect_policy : ReconnectPolicy
        Backoff used between reconnect attempts.
    dedup_window : int
        Number of recent notification ids remembered for deduplication.
    """

    preferences_storage_key: str = "notification-preferences"
    reconcile_unread_on_open: bool = True
    desktop_auto_close_seconds: float = 5.0
    sound_source: str = "sounds/notification.mp3"
    sound_volume: float = 0.3
    heartbeat_timeout: float = 45.0
    reconnect_policy: ReconnectPolicy = ReconnectPolicy()
    dedup_window: int = 200

    @classmethod
    def from_settings(cls, settings: Settings) -> "HubOptions":
        return cls(
            preferences_storage_key=settings.preferences_storage_key,
            reconcile_unread_on_open=settings.reconcile_unread_on_open,
            desktop_auto_close_seconds=settings.desktop_auto_close_seconds,
            sound_source=settings.notification_sound_path,
            sound_volume=settings.notification_sound_volume,
            heartbeat_timeout=settings.heartbeat_timeout,
            reconnect_policy=ReconnectPolicy(
                base_delay=settings.reconnect_base_delay,
                max_delay=settings.reconnect_max_delay,
            ),
        )


class NotificationHub:
    """Single access point for real-time notification state.

    Owns one `StreamConnection`, classifies incoming frames, keeps the
    derived unread count, fans events out to subscribers and mediates
    preference and read-state calls to the backend. Side effects (desktop
    popup, sound) are best-effort and never affect delivery.

    Build it through `notifications.infrastructure.factory.create_notification_hub`
    in production and release it with `dispose`.
    """

    def __init__(
        self,
        *,
        transport: StreamTransport,
        backend: NotificationBackend,
        storage: KeyValueStorage,
        desktop: DesktopNotifications | None = None,
        audio: AudioPlayback | None = None,
        options: HubOptions | None = None,
        call_later: CallLater | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._backend = backend
        self._storage = storage
        self._desktop = desktop
        self._audio = audio
        self._options = options or HubOptions()
        self._call_later = call_later
        self._registry = SubscriberRegistry()
        self._unread = UnreadCounter()
        self._seen_ids: Deque[str] = deque(maxlen=self._options.dedup_window)
        self._background: Set[asyncio.Task] = set()
        self._auto_close_timers: Set[TimerHandle] = set()
        self._sanitizer = get_data_sanitizer()
        self._connection = StreamConnection(
            transport,
            on_open=self._handle_open,
            on_message=self._handle_frame,
            on_close=self._handle_close,
            policy=self._options.reconnect_policy,
            heartbeat_timeout=self._options.heartbeat_timeout,
            desktop=desktop,
            call_later=call_later,
            clock=clock,
        )

    @classmethod
    def create(
        cls,
        *,
        transport: StreamTransport,
        backend: NotificationBackend,
        storage: KeyValueStorage,
        settings: Settings,
        desktop: DesktopNotifications | None = None,
        audio: AudioPlayback | None = None,
        **kwargs: Any,
    ) -> "NotificationHub":
        """Build a hub whose tunables come from ``settings``.

        Extra keyword arguments (``call_later``, ``clock``) are passed to the
        constructor unchanged.
        """
        return cls(
            transport=transport,
            backend=backend,
            storage=storage,
            desktop=desktop,
            audio=audio,
            options=HubOptions.from_settings(settings),
            **kwargs,
        )

    @property
    def connection(self) -> StreamConnection:
        return self._connection

    @property
    def unread(self) -> UnreadCounter:
        """Derived unread counter; callers apply optimistic decrements here."""
        return self._unread

    @property
    def unread_count(self) -> int:
        return self._unread.value

    async def __aenter__(self) -> "NotificationHub":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()

    async def initialize(self, user_id: str) -> None:
        """Start streaming notifications for ``user_id``.

        Does nothing beyond tearing down another user's stream when the
        in-app channel is disabled. Repeated calls for the same user are
        no-ops; a different user replaces the current stream.

        Parameters
        ----------
        user_id : str
            Authenticated user whose notifications are streamed.
        """
        current_user = self._connection.user_id
        if current_user is not None and current_user != user_id:
            self._reset_stream_state()
        self._backend.bind_user(user_id)

        if not self.get_preferences().in_app.enabled:
            logger.info(f"🔕 In-app notifications disabled for {user_id}; stream not started")
            if current_user is not None and current_user != user_id:
                await self._connection.disconnect()
            return

        await self._connection.connect(user_id)

    def subscribe(self, event_name: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for an event.

        Parameters
        ----------
        event_name : str
            ``"notification"``, ``"notification:<type>"`` or ``"unread_count"``.
        callback : Subscriber
            Receives a `Notification` or an `UnreadCount`.

        Returns
        -------
        Callable[[], None]
            Removes exactly this registration.

        Raises
        ------
        ValueError
            If ``event_name`` is not a known event.
        """
        return self._registry.add(self._resolve_event(event_name), callback)

    def subscribe_to_type(
        self, notification_type: NotificationType | str, callback: Subscriber
    ) -> Callable[[], None]:
        """Register ``callback`` for notifications of a single type."""
        return self._registry.add(NotificationType(notification_type), callback)

    def subscriber_count(self, event_name: str) -> int:
        return self._registry.count(self._resolve_event(event_name))

    async def disconnect(self) -> None:
        """Stop the stream and drop every subscription (used on sign-out)."""
        await self._connection.disconnect()
        self._registry.clear()
        self._reset_stream_state()
        self._backend.bind_user(None)

    async def dispose(self) -> None:
        """Disconnect and release everything the hub owns."""
        await self.disconnect()

        for timer in list(self._auto_close_timers):
            timer.cancel()
        self._auto_close_timers.clear()

        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

        await self._backend.aclose()

    def get_preferences(self) -> NotificationPreferences:
        """Return the cached preferences, or the defaults.

        Never raises: a missing or unreadable cache entry yields the defaults.
        """
        key = self._options.preferences_storage_key
        try:
            stored = self._storage.get_item(key)
            if stored:
                return NotificationPreferences.model_validate_json(stored)
        except Exception as e:
            logger.warning(
                "🟠 Failed to load notification preferences: "
                f"{self._sanitizer.sanitize_exception_for_logging(e)}"
            )

        return NotificationPreferences.default()

    def save_preferences_locally(self, preferences: NotificationPreferences) -> bool:
        """Write ``preferences`` to the local cache only.

        Returns
        -------
        bool
            False if the cache could not be written.
        """
        try:
            self._storage.set_item(
                self._options.preferences_storage_key,
                preferences.model_dump_json(by_alias=True),
            )
        except Exception as e:
            logger.error(
                "🔴 Failed to save notification preferences locally: "
                f"{self._sanitizer.sanitize_exception_for_logging(e)}"
            )
            return False
        return True

    async def save_preferences(
        self, preferences: NotificationPreferences
    ) -> NotificationPreferences:
        """Cache ``preferences`` locally, then persist them to the backend.

        The local write is best-effort. The local copy is not rolled back when
        the backend write fails.

        Raises
        ------
        NotificationBackendError
            If the backend rejects or cannot be reached.
        """
        self.save_preferences_locally(preferences)

        try:
            return await self._backend.save_preferences(preferences)
        except NotificationBackendError as e:
            logger.error(f"🔴 Failed to save notification preferences to server: {e}")
            raise

    async def mark_as_read(self, notification_ids: Iterable[str] | str) -> None:
        """Mark notifications as read on the backend.

        Local read flags and the unread count are left to the caller. A
        single id may be passed as a plain string.
        """
        if isinstance(notification_ids, str):
            notification_ids = [notification_ids]
        ids = list(dict.fromkeys(notification_ids))
        if not ids:
            return
        await self._backend.mark_as_read(ids)

    async def mark_all_as_read(self) -> None:
        await self._backend.mark_all_as_read()

    async def fetch_notifications(
        self, page: int = 1, limit: int = 20, unread_only: bool = False
    ) -> NotificationPage:
        return await self._backend.fetch_notifications(
            page=page, limit=limit, unread_only=unread_only
        )

    async def refresh_unread_count(self) -> int:
        """Reconcile the unread count with the backend and emit it."""
        page = await self._backend.fetch_notifications(page=1, limit=1, unread_only=True)
        self._apply_unread(UnreadCount(unread_count=page.unread_count))
        return self._unread.value

    def _resolve_event(self, event_name: str) -> Hashable:
        if isinstance(event_name, (HubEvent, NotificationType)):
            return event_name
        if event_name == HubEvent.NOTIFICATION:
            return HubEvent.NOTIFICATION
        if event_name == HubEvent.UNREAD_COUNT:
            return HubEvent.UNREAD_COUNT
        try:
            return NotificationType.from_event_name(event_name)
        except ValueError as e:
            raise ValueError(f"Unknown notification event: {event_name!r}") from e

    def _reset_stream_state(self) -> None:
        self._unread.reset(0)
        self._seen_ids.clear()

    def _handle_open(self) -> None:
        if not self._options.reconcile_unread_on_open:
            return
        self._spawn(self._reconcile_unread(self._connection.generation))

    def _handle_close(self, reason: str) -> None:
        logger.debug(f"Notification stream lost ({reason}); backoff takes over")

    async def _reconcile_unread(self, generation: int) -> None:
        try:
            page = await self._backend.fetch_notifications(page=1, limit=1, unread_only=True)
        except Exception as e:
            logger.warning(
                "🟠 Could not reconcile unread count: "
                f"{self._sanitizer.sanitize_exception_for_logging(e)}"
            )
            return

        if generation != self._connection.generation:
            return
        self._apply_unread(UnreadCount(unread_count=page.unread_count))

    def _handle_frame(self, frame: StreamFrame) -> None:
        try:
            message = decode_stream_message(frame)
        except StreamProtocolError as e:
            logger.warning(
                f"🟠 Dropping malformed notification frame: {e} | "
                f"frame={self._sanitizer.sanitize_for_logging(frame.data)}"
            )
            return

        if message.kind == MessageKind.HEARTBEAT:
            return
        if message.kind == MessageKind.NOTIFICATION:
            self._handle_notification(message.notification)
        elif message.kind == MessageKind.UNREAD_COUNT:
            self._apply_unread(message.unread)
        else:
            logger.debug(f"Ignoring stream message of type {message.type_name!r}")

    def _apply_unread(self, unread: UnreadCount) -> None:
        self._unread.reset(unread.unread_count)
        self._registry.emit(HubEvent.UNREAD_COUNT, unread)

    def _handle_notification(self, notification: Notification) -> None:
        if notification.id in self._seen_ids:
            logger.debug(f"Skipping already delivered notification {notification.id}")
            return
        self._seen_ids.append(notification.id)

        self._unread.increment()
        self._registry.emit(HubEvent.NOTIFICATION, notification)
        self._registry.emit(notification.type, notification)

        in_app = self.get_preferences().in_app
        if in_app.allows_desktop:
            self._show_desktop_notification(notification)
        if in_app.allows_sound:
            self._spawn(self._play_sound())

    def _show_desktop_notification(self, notification: Notification) -> None:
        desktop = self._desktop
        if desktop is None or not desktop.available:
            return

        try:
            # Never prompt from here; the prompt happens once while connecting.
            if desktop.permission() != PermissionState.GRANTED:
                return
            handle = desktop.show(
                notification.type.desktop_title,
                body=notification.content,
                tag=notification.id,
                link_url=notification.link_url,
            )
        except Exception as e:
            logger.warning(f"🟠 Failed to show desktop notification: {e}")
            return

        self._schedule_auto_close(handle)

    def _schedule_auto_close(self, handle) -> None:
        timer: List[TimerHandle] = []

        def close() -> None:
            if timer:
                self._auto_close_timers.discard(timer[0])
            try:
                handle.close()
            except Exception as e:
                logger.debug(f"Desktop notification already gone: {e}")

        call_later = self._call_later or asyncio.get_running_loop().call_later
        timer.append(call_later(self._options.desktop_auto_close_seconds, close))
        self._auto_close_timers.add(timer[0])

    async def _play_sound(self) -> None:
        audio = self._audio
        if audio is None or not audio.available:
            return
        try:
            await audio.play(self._options.sound_source, self._options.sound_volume)
        except Exception as e:
            # Playback is often refused before the user interacted with the app.
            logger.debug(f"Notification sound not played: {e}")

    def _spawn(self, coroutine: Any) -> None:
        task = asyncio.create_task(coroutine)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
