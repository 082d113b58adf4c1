"""Stream transports.

A transport opens the long-lived, one-directional channel for one workflow
and yields the raw message payloads (JSON text) in arrival order. Decoding
is the codec's job; state is the reducer's. All transports are
interchangeable from the consumer's point of view:

    transport = SSEStreamTransport(base_url, workflow_id)
    try:
        async for payload in transport:
            ...
    except TransportError:
        ...  # connection dropped — not the same as an ERROR event
    finally:
        await transport.aclose()

Implementations:
    SSEStreamTransport      GET .../workflows/{id}/stream, full SSE framing
    ChunkedStreamTransport  POST .../orchestrate, one "data: " line per event
    QueueStreamTransport    in-process subscription over an asyncio.Queue

Iteration ends normally only when the producer sends the [DONE] payload.
Anything else that ends the stream — a failed request, a non-2xx status, a
dropped connection, a body that simply stops — raises TransportError. An
intentional aclose() is never reported as an error.
"""

import asyncio
import codecs
import contextlib
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, AsyncIterator
from typing import Any

import httpx

from core.codec import DATA_PREFIX, DONE_PAYLOAD

logger = logging.getLogger(__name__)

# No read timeout: a stream stays open as long as the producer keeps it open.
STREAM_TIMEOUT = httpx.Timeout(10.0, read=None)


class TransportError(Exception):
    """Raised when the stream connection fails or drops unexpectedly.

    Distinct from an ERROR event, which is the producer explicitly reporting
    a failure over a healthy connection.

    Attributes:
        status_code: HTTP status when the stream request itself was rejected,
            None when the connection failed or dropped mid-stream.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# ── Line reassembly ───────────────────────────────────────────────────────────

class LineBuffer:
    """Reassembles complete text lines from arbitrarily split byte chunks.

    Network frames can split a line, or a multi-byte UTF-8 character, at any
    byte. Bytes are held until a newline arrives; only whole lines leave the
    buffer. Each transport run owns its own buffer.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._pending = ""

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk and return every line it completed, without newlines."""
        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return the unterminated tail, if any, at end of input."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return [tail.rstrip("\r")] if tail else []


class SSEMessageParser:
    """Server-sent events field parser.

    Feeds one line at a time and returns the message data when a blank line
    dispatches it. Multi-line data fields are joined with "\\n"; comment
    lines (":") and unknown fields are ignored. The event name and last id
    are kept for inspection but do not change what is yielded.
    """

    def __init__(self) -> None:
        self._data: list[str] = []
        self.event_name: str | None = None
        self.last_event_id: str | None = None

    def feed_line(self, line: str) -> str | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data.append(value)
        elif field == "event":
            self.event_name = value
        elif field == "id":
            self.last_event_id = value
        return None

    def _dispatch(self) -> str | None:
        if not self._data:
            self.event_name = None
            return None
        data = "\n".join(self._data)
        self._data = []
        self.event_name = None
        return data


# ── Transports ────────────────────────────────────────────────────────────────

class StreamTransport(ABC):
    """Base class for one workflow's event channel.

    Iterable once: a transport belongs to a single run and cannot be
    restarted mid-run. Open a new transport to watch a new run.
    """

    def __init__(self) -> None:
        self._closed = False
        self._iterator: AsyncGenerator[str, None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[str]:
        if self._iterator is not None:
            raise RuntimeError("This stream has already been consumed. Open a new transport.")
        self._iterator = self._guarded()
        return self._iterator

    async def aclose(self) -> None:
        """Stop delivery and release the connection. Safe to call repeatedly.

        Called from inside the consuming task, the underlying connection is
        released before this returns. Called from another task while a read
        is in flight, the read is interrupted and the consuming task releases
        the connection as its iteration ends quietly.
        """
        if self._closed:
            return
        self._closed = True
        self._wake()

        # Only an iterator parked at a yield can be closed from here; one that
        # is mid-read belongs to the consuming task and stops on its own.
        iterator = self._iterator
        if iterator is not None and not iterator.ag_running and iterator.ag_await is None:
            await iterator.aclose()
        logger.debug("%s closed.", type(self).__name__)

    async def __aenter__(self) -> "StreamTransport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _guarded(self) -> AsyncGenerator[str, None]:
        if self._closed:
            return
        async with contextlib.aclosing(self._messages()) as messages:
            async for message in messages:
                if self._closed:
                    return
                yield message

    def _wake(self) -> None:
        """Hook for transports that block somewhere aclose() can interrupt."""

    @abstractmethod
    def _messages(self) -> AsyncIterator[str]:
        """Yield raw payloads until [DONE]; raise TransportError otherwise."""
        ...


class HttpStreamTransport(StreamTransport):
    """Reads a streamed HTTP response body incrementally.

    Subclasses decide the request (method, URL, body) and how a text line
    maps to a message payload via _frame().

    Attributes:
        method: HTTP method of the stream request.
        url: Absolute URL of the stream endpoint.
    """

    def __init__(
        self,
        method: str,
        url: str,
        json_body: dict | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        self.method = method
        self.url = url
        self._json_body = json_body
        self._client = client
        self._closing = asyncio.Event()

    @abstractmethod
    def _frame(self, line: str) -> str | None:
        """Return the payload completed by this line, or None."""
        ...

    async def _messages(self) -> AsyncIterator[str]:
        client = self._client or httpx.AsyncClient(timeout=STREAM_TIMEOUT)
        buffer = LineBuffer()
        try:
            async with client.stream(
                self.method,
                self.url,
                json=self._json_body,
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise TransportError(
                        _error_message(response, "Stream request failed"),
                        status_code=response.status_code,
                    )

                async with contextlib.aclosing(self._read_chunks(response)) as chunks:
                    async for chunk in chunks:
                        for line in buffer.feed(chunk):
                            payload = self._frame(line)
                            if payload is None:
                                continue
                            if payload == DONE_PAYLOAD:
                                return
                            yield payload

                if self._closed:
                    return
                for line in buffer.flush():
                    payload = self._frame(line)
                    if payload == DONE_PAYLOAD:
                        return
                    if payload is not None:
                        yield payload

        except httpx.HTTPError as exc:
            if self._closed:
                return
            raise TransportError(f"Stream connection lost: {exc}") from exc
        finally:
            if self._client is None:
                await client.aclose()

        if not self._closed:
            raise TransportError("Stream ended without an end-of-stream marker")

    def _wake(self) -> None:
        self._closing.set()

    async def _read_chunks(self, response: httpx.Response) -> AsyncGenerator[bytes, None]:
        """Yield body chunks until the body ends or aclose() is called.

        Each read races the close signal, so a close from another task
        interrupts a read that is waiting on a stalled producer and the
        response is released right away.
        """
        chunks = response.aiter_bytes()
        closing = asyncio.ensure_future(self._closing.wait())
        try:
            while True:
                read = asyncio.ensure_future(_next_chunk(chunks))
                try:
                    await asyncio.wait({read, closing}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    if not read.done():
                        read.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await read
                if read.cancelled():
                    return
                chunk = read.result()
                if chunk is None:
                    return
                yield chunk
        finally:
            closing.cancel()
            await chunks.aclose()


class SSEStreamTransport(HttpStreamTransport):
    """Server-push subscription to an existing workflow's event stream."""

    def __init__(self, base_url: str, workflow_id: str, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(
            "GET",
            f"{base_url.rstrip('/')}/api/v1/workflows/{workflow_id}/stream",
            client=client,
        )
        self.workflow_id = workflow_id
        self._parser = SSEMessageParser()

    def _frame(self, line: str) -> str | None:
        return self._parser.feed_line(line)


class ChunkedStreamTransport(HttpStreamTransport):
    """Combined submit-and-stream: POSTs the prompt and reads the response body.

    Each event is a single "data: " line; every other line is ignored.
    """

    def __init__(self, base_url: str, prompt: str, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(
            "POST",
            f"{base_url.rstrip('/')}/api/v1/orchestrate",
            json_body={"prompt": prompt},
            client=client,
        )

    def _frame(self, line: str) -> str | None:
        if not line.startswith(DATA_PREFIX.rstrip()):
            return None
        return line[len(DATA_PREFIX.rstrip()):].lstrip(" ")


_DISCONNECTED = object()
_WAKE = object()


class QueueStreamTransport(StreamTransport):
    """In-process subscription: the producer runs in the same event loop.

    The producer pushes payload strings with put_message(), ends the stream
    with put_done(), or simulates a dropped connection with put_disconnect().

    Attributes:
        queue: The asyncio.Queue shared with the producer.
    """

    def __init__(self, queue: asyncio.Queue | None = None) -> None:
        super().__init__()
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()

    async def put_message(self, payload: str) -> None:
        await self.queue.put(payload)

    async def put_done(self) -> None:
        await self.queue.put(DONE_PAYLOAD)

    async def put_disconnect(self) -> None:
        await self.queue.put(_DISCONNECTED)

    def _wake(self) -> None:
        # A full queue means the reader is not blocked; it sees the closed
        # flag at its next message.
        with contextlib.suppress(asyncio.QueueFull):
            self.queue.put_nowait(_WAKE)

    async def _messages(self) -> AsyncIterator[str]:
        while True:
            item = await self.queue.get()
            if item is _WAKE:
                return
            if item is _DISCONNECTED:
                raise TransportError("Subscription dropped by producer")
            if item == DONE_PAYLOAD:
                return
            yield item


async def _next_chunk(chunks: AsyncIterator[bytes]) -> bytes | None:
    return await anext(chunks, None)


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Pull {"error": ...} out of a failed response body, if present."""
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return f"{fallback} (HTTP {response.status_code})"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"{fallback} (HTTP {response.status_code})"
