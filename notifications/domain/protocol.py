import json
from enum import StrEnum

from pydantic import ValidationError, dataclasses

from .entities import Notification, UnreadCount
from .exceptions import StreamProtocolError

HEARTBEAT_COMMENT = "heartbeat"
CONNECTED_COMMENT = "connected"
LEGACY_HEARTBEAT_DATA = ": heartbeat"


class MessageKind(StrEnum):
    HEARTBEAT = "heartbeat"
    NOTIFICATION = "notification"
    UNREAD_COUNT = "unread_count"
    UNKNOWN = "unknown"


@dataclasses.dataclass(frozen=True)
class StreamFrame:
    """One dispatched unit of the server-push stream.

    Attributes
    ----------
    data : str
        Joined ``data`` lines of the event; empty for comment frames.
    event : str, default="message"
        Event type field.
    id : str | None
        Last event id field, if sent.
    comment : str | None
        Text of a comment line; set only for comment frames.
    """

    data: str = ""
    event: str = "message"
    id: str | None = None
    comment: str | None = None

    @property
    def is_comment(self) -> bool:
        return self.comment is not None


@dataclasses.dataclass(frozen=True)
class StreamMessage:
    """Classified content of a stream frame."""

    kind: MessageKind
    notification: Notification | None = None
    unread: UnreadCount | None = None
    type_name: str | None = None


HEARTBEAT = StreamMessage(kind=MessageKind.HEARTBEAT)


def decode_stream_message(frame: StreamFrame) -> StreamMessage:
    """Classify a stream frame.

    Comment frames and heartbeat payloads only prove liveness. JSON payloads
    are classified by their ``type`` field; unknown types are returned as
    ``UNKNOWN`` so callers can drop them without treating them as errors.

    Parameters
    ----------
    frame : StreamFrame
        Frame produced by the transport.

    Returns
    -------
    StreamMessage
        Classified message.

    Raises
    ------
    StreamProtocolError
        If the payload is not JSON, not an object, or fails validation.
    """
    if frame.is_comment:
        return HEARTBEAT

    text = frame.data.strip()
    if not text or text == LEGACY_HEARTBEAT_DATA:
        return HEARTBEAT

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise StreamProtocolError(f"Frame is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise StreamProtocolError("Frame payload must be a JSON object")

    message_type = payload.get("type")

    if message_type == MessageKind.HEARTBEAT:
        return HEARTBEAT

    if message_type == MessageKind.NOTIFICATION:
        try:
            notification = Notification.model_validate(payload.get("data"))
        except ValidationError as e:
            raise StreamProtocolError(f"Invalid notification payload: {e}") from e
        return StreamMessage(kind=MessageKind.NOTIFICATION, notification=notification)

    if message_type == MessageKind.UNREAD_COUNT:
        return StreamMessage(
            kind=MessageKind.UNREAD_COUNT,
            unread=UnreadCount(unread_count=_extract_count(payload)),
        )

    return StreamMessage(kind=MessageKind.UNKNOWN, type_name=str(message_type))


def _extract_count(payload: dict) -> int:
    # Older servers sent ``unreadCount``; ``count`` is canonical.
    if "count" in payload:
        count = payload["count"]
    elif "unreadCount" in payload:
        count = payload["unreadCount"]
    else:
        raise StreamProtocolError("Unread-count frame without a count")

    if isinstance(count, bool) or not isinstance(count, (int, float)):
        raise StreamProtocolError(f"Unread count must be numeric, got {count!r}")
    if isinstance(count, float) and not count.is_integer():
        raise StreamProtocolError(f"Unread count must be a whole number, got {count!r}")

    return int(count)


def encode_comment(text: str) -> str:
    return f": {text}\n\n"


def encode_data(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def encode_notification_frame(notification: Notification) -> str:
    return encode_data({"type": MessageKind.NOTIFICATION.value, "data": notification.to_wire()})


def encode_unread_count_frame(count: int) -> str:
    return encode_data({"type": MessageKind.UNREAD_COUNT.value, "count": max(0, count)})
