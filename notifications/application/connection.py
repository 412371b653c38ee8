import asyncio
import time
from enum import StrEnum
from typing import Any, Callable, Protocol, Set

from loguru import logger
from pydantic import dataclasses

from core.infrastructure.logging import ConnectionContextLogger

from ..domain.entities import PermissionState
from ..domain.protocol import StreamFrame
from .ports import DesktopNotifications, StreamSession, StreamTransport


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


class ConnectionState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"


@dataclasses.dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff capped at a maximum delay.

    Attributes
    ----------
    base_delay : float, default=1.0
        Delay in seconds before the first reconnect attempt.
    max_delay : float, default=30.0
        Upper bound for any reconnect delay.
    """

    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Return the delay before reconnect ``attempt`` (1-based)."""
        exponent = min(max(attempt, 1) - 1, 64)
        return min(self.base_delay * 2**exponent, self.max_delay)


def _default_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class StreamConnection:
    """One live server-push connection for one user.

    Lifecycle: ``IDLE -> CONNECTING -> OPEN``; from ``OPEN`` the connection
    goes back to ``IDLE`` on an explicit `disconnect`, or to ``CONNECTING``
    after a transport close or a heartbeat timeout, waiting out the backoff
    delay before the next attempt.

    Each attempt is tagged with a generation number. Disconnecting, switching
    users and scheduling a reconnect all bump the generation, and every read
    loop and timer callback checks its own generation before acting, so work
    belonging to a superseded attempt can never touch the current one. At
    most one timer (heartbeat check or reconnect) is owned at a time.

    Parameters
    ----------
    transport : StreamTransport
        Opens the underlying stream.
    on_open : Callable[[], Any] | None
        Called once per successful open.
    on_message : Callable[[StreamFrame], Any] | None
        Called for every frame, heartbeats included.
    on_close : Callable[[str], Any] | None
        Called with a reason when the stream closed without being asked to.
    policy : ReconnectPolicy
        Backoff policy.
    heartbeat_timeout : float
        Seconds of silence after which the stream is treated as dead.
    desktop : DesktopNotifications | None
        If given, permission is requested once while connecting.
    call_later, clock
        Timer scheduling and monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        transport: StreamTransport,
        *,
        on_open: Callable[[], Any] | None = None,
        on_message: Callable[[StreamFrame], Any] | None = None,
        on_close: Callable[[str], Any] | None = None,
        policy: ReconnectPolicy | None = None,
        heartbeat_timeout: float = 45.0,
        desktop: DesktopNotifications | None = None,
        call_later: CallLater | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._transport = transport
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._policy = policy or ReconnectPolicy()
        self._heartbeat_timeout = heartbeat_timeout
        self._desktop = desktop
        self._call_later = call_later or _default_call_later
        self._clock = clock or time.monotonic

        self._state = ConnectionState.IDLE
        self._user_id: str | None = None
        self._generation = 0
        self._attempts = 0
        self._last_delay: float | None = None
        self._last_event_at = 0.0
        self._task: asyncio.Task | None = None
        self._session: StreamSession | None = None
        self._timer: TimerHandle | None = None
        self._background: Set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def last_reconnect_delay(self) -> float | None:
        return self._last_delay

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    async def connect(self, user_id: str) -> None:
        """Open the stream for ``user_id``.

        No-op while already open or connecting for the same user. A
        connection for a different user is torn down first.
        """
        if self._state != ConnectionState.IDLE:
            if self._user_id == user_id:
                return
            logger.info(f"🔄 Switching notification stream from {self._user_id} to {user_id}")
            await self.disconnect()

        self._user_id = user_id
        self._request_permission()
        self._start_attempt()

    async def disconnect(self) -> None:
        """Tear the stream down and cancel all pending timers.

        Safe to call repeatedly or while idle. No reconnect follows.
        """
        self._generation += 1
        self._cancel_timer()

        task, self._task = self._task, None
        session, self._session = self._session, None
        was_active = self._state != ConnectionState.IDLE

        self._state = ConnectionState.IDLE
        self._user_id = None
        self._attempts = 0
        self._last_delay = None

        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait([task])

        if session is not None:
            await self._close_session(session)

        if was_active:
            logger.info("🔌 Notification stream disconnected")

    def _start_attempt(self) -> None:
        self._cancel_timer()
        self._generation += 1
        generation = self._generation
        self._state = ConnectionState.CONNECTING
        self._task = asyncio.create_task(
            self._run(generation, self._user_id),
            name=f"notification-stream-{generation}",
        )

    async def _run(self, generation: int, user_id: str) -> None:
        with ConnectionContextLogger(user_id=user_id, generation=generation):
            session = None
            reason = "stream closed by server"
            try:
                session = await self._transport.open(user_id)
                if generation != self._generation:
                    return

                self._session = session
                self._handle_opened(generation)

                async for frame in session.frames():
                    if generation != self._generation:
                        return
                    self._last_event_at = self._clock()
                    self._notify(self._on_message, frame)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"
                logger.warning(f"🟠 Notification stream error: {reason}")
            finally:
                if session is not None:
                    if self._session is session:
                        self._session = None
                    await self._close_session(session)

            if generation == self._generation:
                self._handle_unexpected_close(reason)

    def _handle_opened(self, generation: int) -> None:
        self._state = ConnectionState.OPEN
        self._attempts = 0
        self._last_delay = None
        self._last_event_at = self._clock()
        self._schedule_heartbeat_check(generation, self._heartbeat_timeout)
        logger.info("🟢 Notification stream connected")
        self._notify(self._on_open)

    def _handle_unexpected_close(self, reason: str) -> None:
        logger.warning(f"🟠 Notification stream closed unexpectedly: {reason}")
        self._notify(self._on_close, reason)
        self._schedule_reconnect()

    def _schedule_heartbeat_check(self, generation: int, delay: float) -> None:
        self._set_timer(delay, lambda: self._check_heartbeat(generation))

    def _check_heartbeat(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation or self._state != ConnectionState.OPEN:
            return

        silence = self._clock() - self._last_event_at
        if silence >= self._heartbeat_timeout:
            logger.warning(
                f"🟠 No heartbeat received for {silence:.1f}s, reconnecting..."
            )
            self._schedule_reconnect()
        else:
            self._schedule_heartbeat_check(generation, self._heartbeat_timeout - silence)

    def _schedule_reconnect(self) -> None:
        if self._user_id is None:
            return

        # Supersede the current attempt; its read loop closes its own session.
        self._generation += 1
        generation = self._generation
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        self._state = ConnectionState.CONNECTING
        self._attempts += 1
        delay = self._policy.delay_for(self._attempts)
        self._last_delay = delay
        logger.info(
            f"🔁 Reconnecting notifications in {delay:.3f}s (attempt {self._attempts})"
        )
        self._set_timer(delay, lambda: self._reconnect_due(generation))

    def _reconnect_due(self, generation: int) -> None:
        self._timer = None
        if generation != self._generation or self._user_id is None:
            return
        self._start_attempt()

    def _set_timer(self, delay: float, callback: Callable[[], None]) -> None:
        self._cancel_timer()
        self._timer = self._call_later(delay, callback)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _request_permission(self) -> None:
        desktop = self._desktop
        if desktop is None or not desktop.available:
            return

        try:
            if desktop.permission() != PermissionState.DEFAULT:
                return
        except Exception as e:
            logger.debug(f"Desktop permission state unavailable: {e}")
            return

        task = asyncio.create_task(self._ask_permission(desktop))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _ask_permission(self, desktop: DesktopNotifications) -> None:
        try:
            decision = await desktop.request_permission()
            logger.debug(f"Desktop notification permission: {decision}")
        except Exception as e:
            logger.debug(f"Desktop notification permission request failed: {e}")

    async def _close_session(self, session: StreamSession) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing stream session: {e}")

    def _notify(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.opt(exception=e).error(f"🔴 Stream listener {callback!r} failed: {e}")
