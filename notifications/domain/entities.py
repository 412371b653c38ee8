from datetime import datetime
from enum import StrEnum
from typing import List

from pydantic import BaseModel, ConfigDict, Field, dataclasses, field_validator
from pydantic.alias_generators import to_camel


class HubEvent(StrEnum):
    """Event names subscribers can register for on the notification hub."""

    NOTIFICATION = "notification"
    UNREAD_COUNT = "unread_count"


class NotificationType(StrEnum):
    """Closed set of notification types produced by the backend."""

    FOLLOW = "FOLLOW"
    LIKE = "LIKE"
    COMMENT = "COMMENT"
    MESSAGE = "MESSAGE"
    SYSTEM = "SYSTEM"

    @property
    def event_name(self) -> str:
        """Type-scoped event name, e.g. ``notification:follow``."""
        return f"{HubEvent.NOTIFICATION.value}:{self.value.lower()}"

    @property
    def desktop_title(self) -> str:
        return DESKTOP_TITLES[self]

    @classmethod
    def from_event_name(cls, event_name: str) -> "NotificationType":
        """Resolve a ``notification:<type>`` event name to its type.

        Raises
        ------
        ValueError
            If the name is not a type-scoped notification event.
        """
        prefix, _, type_name = event_name.partition(":")
        if prefix != HubEvent.NOTIFICATION.value or not type_name:
            raise ValueError(f"Not a type-scoped notification event: {event_name!r}")
        return cls(type_name.upper())


DESKTOP_TITLES = {
    NotificationType.FOLLOW: "New Follower",
    NotificationType.LIKE: "New Like",
    NotificationType.COMMENT: "New Comment",
    NotificationType.MESSAGE: "New Message",
    NotificationType.SYSTEM: "System Notification",
}


class PermissionState(StrEnum):
    """Desktop notification permission as reported by the platform."""

    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class EmailFrequency(StrEnum):
    INSTANT = "instant"
    DAILY = "daily"
    WEEKLY = "weekly"


class WireModel(BaseModel):
    """Base for entities exchanged with the backend using camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class NotificationSender(WireModel):
    """Actor who triggered a notification.

    Attributes
    ----------
    id : str
        Identifier of the sending user.
    name : str | None
        Display name, if the user has set one.
    username : str | None
        Unique handle of the user.
    image : str | None
        Avatar URL.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None
    username: str | None = None
    image: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.username or self.id


class Notification(WireModel):
    """Immutable event record as received from the backend.

    Attributes
    ----------
    id : str
        Opaque unique identifier, used for deduplication and as a UI key.
    type : NotificationType
        Category of the notification.
    content : str
        Human-readable text, already formatted server-side.
    created_at : datetime
        Creation timestamp, used for ordering and relative-time display.
    sender : NotificationSender | None
        Actor who triggered the event; absent for system notifications.
    link_url : str | None
        Deep link the UI navigates to on click.
    read : bool, default=False
        Read flag; only changed through explicit mark-as-read calls.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    type: NotificationType
    content: str
    created_at: datetime
    sender: NotificationSender | None = None
    link_url: str | None = None
    read: bool = False

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    def as_read(self) -> "Notification":
        return self.model_copy(update={"read": True})


@dataclasses.dataclass(frozen=True)
class UnreadCount:
    """Unread-count event delivered to ``unread_count`` subscribers."""

    unread_count: int

    @field_validator("unread_count")
    @classmethod
    def clamp_non_negative(cls, value: int) -> int:
        return max(0, value)


class UnreadCounter:
    """Derived unread-notification counter.

    Fed by unread-count frames (``reset``), new notifications (``increment``)
    and optimistic mark-as-read updates (``decrement``). The value never goes
    below zero.
    """

    def __init__(self, value: int = 0) -> None:
        self._value = max(0, value)

    @property
    def value(self) -> int:
        return self._value

    def increment(self, amount: int = 1) -> int:
        self._value = max(0, self._value + amount)
        return self._value

    def decrement(self, amount: int = 1) -> int:
        self._value = max(0, self._value - amount)
        return self._value

    def reset(self, value: int) -> int:
        self._value = max(0, value)
        return self._value

    def snapshot(self) -> UnreadCount:
        return UnreadCount(unread_count=self._value)


class TypeToggles(WireModel):
    """Per-type on/off switches for a delivery channel."""

    follow: bool = True
    like: bool = True
    comment: bool = True
    message: bool = True
    system: bool = True

    def allows(self, notification_type: NotificationType) -> bool:
        return getattr(self, notification_type.value.lower())


class EmailChannelPreferences(WireModel):
    enabled: bool = True
    frequency: EmailFrequency = EmailFrequency.INSTANT
    types: TypeToggles = Field(default_factory=TypeToggles)


class PushChannelPreferences(WireModel):
    enabled: bool = True
    types: TypeToggles = Field(default_factory=TypeToggles)


class InAppPreferences(WireModel):
    """In-app channel settings.

    Sound is off by default so new users are not surprised by audio.
    """

    enabled: bool = True
    sound: bool = False
    desktop: bool = True

    @property
    def allows_desktop(self) -> bool:
        return self.enabled and self.desktop

    @property
    def allows_sound(self) -> bool:
        return self.enabled and self.sound


class NotificationPreferences(WireModel):
    """User-scoped notification configuration across the three channels.

    Attributes
    ----------
    email : EmailChannelPreferences
        E-mail delivery switch, frequency and per-type toggles.
    push : PushChannelPreferences
        Push delivery switch and per-type toggles.
    in_app : InAppPreferences
        In-app stream switch plus sound and desktop reactions.
    """

    email: EmailChannelPreferences = Field(default_factory=EmailChannelPreferences)
    push: PushChannelPreferences = Field(default_factory=PushChannelPreferences)
    in_app: InAppPreferences = Field(default_factory=InAppPreferences)

    @classmethod
    def default(cls) -> "NotificationPreferences":
        return cls()


class Pagination(WireModel):
    page: int = 1
    limit: int = 20
    total_count: int = 0
    total_pages: int = 0


class NotificationPage(WireModel):
    """One page of the user's notification list plus the unread total."""

    notifications: List[Notification] = Field(default_factory=list)
    unread_count: int = 0
    pagination: Pagination = Field(default_factory=Pagination)

    @property
    def has_more(self) -> bool:
        return self.pagination.page < self.pagination.total_pages
