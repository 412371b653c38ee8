from typing import AsyncIterator, Dict, List

import httpx
from loguru import logger

from ..application.ports import StreamSession, StreamTransport
from ..domain.exceptions import StreamTransportError
from ..domain.protocol import StreamFrame

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"


class SSEDecoder:
    """Incremental Server-Sent Events line decoder.

    Feed it one line at a time (without the line terminator). A blank line
    dispatches the buffered event; lines starting with ``:`` are comments
    and are surfaced immediately as comment frames so they can count as
    liveness. Unknown fields are ignored.
    """

    def __init__(self) -> None:
        self._data: List[str] = []
        self._event = ""
        self._last_event_id: str | None = None
        self.retry: int | None = None

    def feed(self, line: str) -> StreamFrame | None:
        """Consume one line.

        Returns
        -------
        StreamFrame | None
            The dispatched frame, or None if more lines are needed.
        """
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return StreamFrame(comment=line[1:].lstrip(" "))

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self.retry = int(value)
        return None

    def _dispatch(self) -> StreamFrame | None:
        if not self._data:
            self._event = ""
            return None

        frame = StreamFrame(
            data="\n".join(self._data),
            event=self._event or "message",
            id=self._last_event_id,
        )
        self._data = []
        self._event = ""
        return frame


class HttpxStreamSession(StreamSession):
    """Open SSE response read line by line."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._closed = False

    async def frames(self) -> AsyncIterator[StreamFrame]:
        decoder = SSEDecoder()
        try:
            async for line in self._response.aiter_lines():
                frame = decoder.feed(line)
                if frame is not None:
                    yield frame
        except httpx.HTTPError as e:
            raise StreamTransportError(f"Notification stream interrupted: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class HttpxStreamTransport(StreamTransport):
    """Opens the notification SSE endpoint with a shared ``httpx.AsyncClient``.

    The read timeout is disabled for the stream; liveness is enforced by the
    connection's heartbeat check instead.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        stream_path: str,
        connect_timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._stream_path = stream_path
        self._connect_timeout = connect_timeout

    def _headers(self, user_id: str) -> Dict[str, str]:
        return {
            "Accept": EVENT_STREAM_MEDIA_TYPE,
            "Cache-Control": "no-cache",
            "X-User-Id": user_id,
        }

    async def open(self, user_id: str) -> StreamSession:
        request = self._client.build_request(
            "GET",
            self._stream_path,
            headers=self._headers(user_id),
            timeout=httpx.Timeout(self._connect_timeout, read=None),
        )

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise StreamTransportError(f"Could not open notification stream: {e}") from e

        if response.status_code != httpx.codes.OK:
            await response.aclose()
            raise StreamTransportError(
                f"Notification stream rejected with status {response.status_code}"
            )

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith(EVENT_STREAM_MEDIA_TYPE):
            await response.aclose()
            raise StreamTransportError(
                f"Unexpected notification stream content type: {content_type!r}"
            )

        logger.debug(f"Notification stream accepted by {response.url}")
        return HttpxStreamSession(response)
