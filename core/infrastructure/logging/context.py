import contextvars
from typing import Any, Dict

connection_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "connection_context", default={}
)


class ConnectionContextLogger:
    """Context manager for adding stream-connection information to logs.

    Every record emitted while the context is active carries the user and
    connection generation it belongs to, which makes interleaved reconnects
    distinguishable in the log output. Works both as a sync and an async
    context manager.
    """

    def __init__(self, user_id: str | None = None, generation: int | None = None, **context):
        self.context = {"user_id": user_id, "generation": generation, **context}
        self.token = None

    def __enter__(self):
        """Enter the context, set the connection context.

        Returns
        -------
        ConnectionContextLogger
            Instance of `ConnectionContextLogger`.
        """
        self.token = connection_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit the context, reset the connection context."""
        if self.token is not None:
            connection_context.reset(self.token)
            self.token = None

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.__exit__(exc_type, exc_val, exc_tb)
