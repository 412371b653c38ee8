class NotificationError(Exception):
    """Base class for errors raised by the notification subsystem."""


class NotificationBackendError(NotificationError):
    """A caller-initiated backend call failed.

    Raised from preference saves, read-state mutations and list fetches so the
    caller can decide how to report the failure.

    Attributes
    ----------
    status_code : int | None
        HTTP status returned by the backend, None for network failures.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamTransportError(NotificationError):
    """The stream transport could not be opened or dropped mid-stream."""


class StreamProtocolError(NotificationError):
    """A stream frame could not be decoded."""
