"""Stream transport: a cancellable POST whose body is decoded into SSE frames.

The read loop is a single sequential consumer. Each chunk is decoded and every
frame it completes is dispatched before the next chunk is read. Frames may be
split across reads at any byte; incomplete trailing lines are carried over.
"""
from __future__ import annotations

import asyncio
import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import httpx

from .config import ApiSettings, settings

logger = logging.getLogger(__name__)

NETWORK_CHANGED_MESSAGE = "Network connection changed during streaming. Please try again."
CONNECTION_FAILED_MESSAGE = "Connection failed. Please check your network and try again."
TIMEOUT_MESSAGE = "The stream timed out waiting for data. Please try again."
GENERIC_FAILURE_MESSAGE = "Failed to stream matches"

FrameCallback = Callable[["Frame"], None]
ErrorCallback = Callable[["TransportError"], None]
EndCallback = Callable[[], None]


class TransportError(Exception):
    """Raised when the stream fails for a reason other than cancellation."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class Frame:
    """One decoded event-stream frame."""
    event: str | None
    data: str

    def json(self) -> Any:
        return json.loads(self.data)


class SSEDecoder:
    """Incremental `text/event-stream` decoder.

    Bytes go in through `feed`, complete frames come out. The decoder keeps a
    carry-over buffer for the trailing partial line and an incremental UTF-8
    decoder for multi-byte characters split across chunks.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, chunk: bytes) -> list[Frame]:
        """Decode a chunk and return the frames it completes, in order."""
        text = self._decoder.decode(chunk)
        if not text:
            return []

        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")

        frames = []
        for line in lines:
            if line.endswith("\r"):
                line = line[:-1]
            frame = self._process_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def close(self) -> int:
        """Discard anything not terminated by a blank line.

        Returns:
            Number of characters discarded (buffered text plus pending data)
        """
        remainder = self._buffer + self._decoder.decode(b"", final=True)
        discarded = len(remainder) + sum(len(d) for d in self._data)
        self._buffer = ""
        self._event = None
        self._data = []
        return discarded

    def _process_line(self, line: str) -> Frame | None:
        if line == "":
            return self._dispatch()

        # Comment / keep-alive
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value.strip() or None
        elif name == "data":
            self._data.append(value)
        # id, retry and unknown fields carry nothing we use
        return None

    def _dispatch(self) -> Frame | None:
        event, data = self._event, self._data
        self._event = None
        self._data = []
        if not data:
            return None
        return Frame(event=event, data="\n".join(data))


def classify_failure(exc: BaseException) -> TransportError:
    """Map a low-level failure to a TransportError with user-facing guidance."""
    if isinstance(exc, TransportError):
        return exc

    text = str(exc)
    if "ERR_NETWORK_CHANGED" in text or isinstance(exc, (httpx.ReadError, httpx.RemoteProtocolError)):
        message = NETWORK_CHANGED_MESSAGE
    elif isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
        message = CONNECTION_FAILED_MESSAGE
    elif isinstance(exc, httpx.TimeoutException):
        message = TIMEOUT_MESSAGE
    elif text:
        message = text
    else:
        message = GENERIC_FAILURE_MESSAGE

    return TransportError(message)


class StreamHandle:
    """Cancellable handle for one open stream."""

    def __init__(self, endpoint: str) -> None:
        self.endpoint = endpoint
        self._abort = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def cancel(self) -> None:
        """Signal the read loop to stop. Calling it again does nothing."""
        if self._abort.is_set():
            return
        self._abort.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info(f"Stream cancelled: {self.endpoint}")

    async def wait(self) -> None:
        """Wait until the read loop has exited, however it ended."""
        if self._task is None:
            return
        await asyncio.wait([self._task])


class StreamTransport:
    """Opens streaming match requests and feeds decoded frames to a callback.

    Performs no retries or reconnection; callers decide when to start again.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        config: ApiSettings | None = None,
    ) -> None:
        self._config = config or settings.api
        self._client = client
        self._owns_client = client is None

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._config.request_timeout,
            connect=self._config.connect_timeout,
            read=self._config.read_timeout,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> StreamTransport:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def open(
        self,
        endpoint: str,
        request_body: Mapping[str, Any],
        auth_token: str | None,
        on_frame: FrameCallback,
        *,
        on_error: ErrorCallback | None = None,
        on_end: EndCallback | None = None,
    ) -> StreamHandle:
        """Start streaming `endpoint` in a background task.

        Args:
            endpoint: Absolute URL to POST to
            request_body: JSON request body
            auth_token: Optional bearer token
            on_frame: Called synchronously for each frame, in arrival order
            on_error: Called once on a genuine failure (never on cancel)
            on_end: Called when the server closes the stream normally

        Returns:
            StreamHandle for cancellation and waiting

        Must be called from a running event loop.
        """
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        handle = StreamHandle(endpoint)
        handle._task = asyncio.get_running_loop().create_task(
            self._read_loop(handle, dict(request_body), headers, on_frame, on_error, on_end),
            name=f"match-stream:{endpoint}",
        )
        return handle

    async def _read_loop(
        self,
        handle: StreamHandle,
        body: dict[str, Any],
        headers: dict[str, str],
        on_frame: FrameCallback,
        on_error: ErrorCallback | None,
        on_end: EndCallback | None,
    ) -> None:
        decoder = SSEDecoder()
        client = self._get_client()

        try:
            async with client.stream(
                "POST",
                handle.endpoint,
                json=body,
                headers=headers,
                timeout=self.timeout,
            ) as response:
                if not response.is_success:
                    raise TransportError(
                        f"HTTP {response.status_code}: {response.reason_phrase}",
                        status_code=response.status_code,
                    )

                logger.info(f"Stream opened: {handle.endpoint}")
                async for chunk in response.aiter_bytes():
                    if handle.aborted:
                        break
                    for frame in decoder.feed(chunk):
                        if handle.aborted:
                            break
                        self._dispatch(on_frame, frame)

        except asyncio.CancelledError:
            if handle.aborted:
                logger.debug(f"Read loop exited after cancel: {handle.endpoint}")
                return
            raise
        except Exception as e:
            if handle.aborted:
                logger.debug(f"Ignoring failure after cancel: {e}")
                return
            error = classify_failure(e)
            if isinstance(e, (TransportError, httpx.HTTPError)):
                logger.error(f"Streaming error: {error.message}")
            else:
                logger.error(f"Unexpected streaming error: {e}", exc_info=True)
            self._report(on_error, error)
            return

        discarded = decoder.close()
        if discarded:
            logger.warning(f"Discarded {discarded} chars of unterminated frame data at stream end")

        if handle.aborted:
            return

        logger.info("Stream completed")
        if on_end is not None:
            on_end()

    @staticmethod
    def _dispatch(on_frame: FrameCallback, frame: Frame) -> None:
        try:
            on_frame(frame)
        except Exception as e:
            logger.error(f"Error handling stream event {frame.event}: {e}", exc_info=True)

    @staticmethod
    def _report(on_error: ErrorCallback | None, error: TransportError) -> None:
        if on_error is None:
            return
        try:
            on_error(error)
        except Exception as e:
            logger.error(f"Error handler failed: {e}", exc_info=True)

    async def probe(self, path: str | None = None) -> int:
        """Open the backend's test stream and count the frames it sends.

        Raises:
            TransportError: If the test stream cannot be read
        """
        url = f"{self._config.base_url}{path or self._config.stream_test_path}"
        decoder = SSEDecoder()
        frames = 0

        try:
            async with self._get_client().stream(
                "GET",
                url,
                headers={"Accept": "text/event-stream"},
                timeout=self.timeout,
            ) as response:
                if not response.is_success:
                    raise TransportError(
                        f"HTTP {response.status_code}: {response.reason_phrase}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    logger.debug(f"Test stream chunk: {len(chunk)} bytes")
                    frames += len(decoder.feed(chunk))
        except TransportError:
            raise
        except httpx.HTTPError as e:
            raise classify_failure(e) from e

        decoder.close()
        logger.info(f"Test stream completed with {frames} frames")
        return frames
