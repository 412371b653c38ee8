from typing import Any, Callable, Dict, Hashable, List

from loguru import logger

Subscriber = Callable[[Any], Any]


class SubscriberRegistry:
    """Map of event keys to the callbacks subscribed to them.

    Registrations have set semantics: registering an equal callback twice for
    the same key keeps a single registration. Emission iterates over a
    snapshot so callbacks may subscribe or unsubscribe while an event is being
    delivered, and a failing callback never prevents the remaining ones from
    running.
    """

    def __init__(self) -> None:
        # dict keys double as an insertion-ordered set
        self._subscribers: Dict[Hashable, Dict[Subscriber, None]] = {}

    def add(self, key: Hashable, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``key``.

        Parameters
        ----------
        key : Hashable
            Event key.
        callback : Subscriber
            Callable invoked with the event payload.

        Returns
        -------
        Callable[[], None]
            Function removing exactly this registration; calling it more than
            once is a no-op.
        """
        self._subscribers.setdefault(key, {})[callback] = None

        def unsubscribe() -> None:
            self.remove(key, callback)

        return unsubscribe

    def remove(self, key: Hashable, callback: Subscriber) -> bool:
        callbacks = self._subscribers.get(key)
        if callbacks is None or callback not in callbacks:
            return False

        del callbacks[callback]
        if not callbacks:
            del self._subscribers[key]
        return True

    def emit(self, key: Hashable, payload: Any) -> int:
        """Invoke every callback registered for ``key`` with ``payload``.

        Returns
        -------
        int
            Number of callbacks that completed without raising.
        """
        callbacks = self._subscribers.get(key)
        if not callbacks:
            return 0

        delivered = 0
        for callback in list(callbacks):
            try:
                callback(payload)
                delivered += 1
            except Exception as e:
                logger.opt(exception=e).error(
                    f"🔴 Subscriber {callback!r} failed for event {key}: {e}"
                )
        return delivered

    def keys(self) -> List[Hashable]:
        return list(self._subscribers)

    def count(self, key: Hashable) -> int:
        return len(self._subscribers.get(key, ()))

    def clear(self) -> None:
        self._subscribers.clear()
