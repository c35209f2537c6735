import logging
import re
import typing
from dataclasses import dataclass
from functools import partial

import anyio
import httpx
from fastapi import Response
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.types import Receive, Send, Scope
from tqdm.asyncio import tqdm as tqdm_asyncio

from streamgate.configs import settings
from streamgate.errors import RangeNotSatisfiable, TransportAbort

logger = logging.getLogger(__name__)

RANGE_PATTERN = re.compile(r"^bytes=(\d+)-(\d*)$")


def create_httpx_client(follow_redirects: bool = True, **kwargs) -> httpx.AsyncClient:
    """
    Create an HTTPX AsyncClient for calls to the auth and content services.

    Args:
        follow_redirects (bool): Whether to follow 3xx redirects automatically.
        **kwargs: Additional AsyncClient keyword arguments.

    Returns:
        httpx.AsyncClient: Configured client.
    """
    kwargs.setdefault("timeout", settings.auth_timeout)
    return httpx.AsyncClient(follow_redirects=follow_redirects, **kwargs)


def get_client_ip(request: Request) -> typing.Optional[str]:
    """
    Extract the client's real IP address from the request headers or fallback to the client host.
    """
    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        # The first entry is the original client.
        return x_forwarded_for.split(",")[0].strip()
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip
    return request.client.host if request.client else "127.0.0.1"


def get_original_scheme(request: Request) -> str:
    """
    Determine the original scheme (http or https) of the incoming request.

    Args:
        request (Request): Incoming HTTP request.

    Returns:
        str: 'http' or 'https'
    """
    forwarded_proto = request.headers.get("X-Forwarded-Proto")
    if forwarded_proto:
        return forwarded_proto

    if (
        request.url.scheme == "https"
        or request.headers.get("X-Forwarded-Ssl") == "on"
        or request.headers.get("X-Forwarded-Protocol") == "https"
        or request.headers.get("X-Url-Scheme") == "https"
    ):
        return "https"

    return "http"


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int
    total_size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total_size}"


def parse_range_header(range_header: typing.Optional[str], total_size: int) -> typing.Optional[ByteRange]:
    """
    Parse a single ``bytes=<start>-[<end>]`` range against a file of ``total_size`` bytes.

    Anything that does not match the grammar (suffix ranges, multiple ranges, other
    units, ``end < start``) is treated as if no Range header was sent.

    Raises:
        RangeNotSatisfiable: If ``start`` lies at or past the end of the file.
    """
    if not range_header:
        return None

    match = RANGE_PATTERN.match(range_header.strip())
    if not match:
        logger.debug(f"Ignoring malformed Range header: {range_header!r}")
        return None

    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else total_size - 1

    if start >= total_size:
        raise RangeNotSatisfiable(total_size)

    if end < start:
        logger.debug(f"Ignoring inverted Range header: {range_header!r}")
        return None

    return ByteRange(start, min(end, total_size - 1), total_size)


def format_bytes(size) -> str:
    power = 2**10
    n = 0
    units = {0: "B", 1: "KB", 2: "MB", 3: "GB", 4: "TB"}
    while size > power:
        size /= power
        n += 1
    return f"{size:.2f} {units[n]}"


async def close_file_handle(file_handle) -> None:
    # shielded so the handle is released even inside a cancelled scope
    with anyio.CancelScope(shield=True):
        await file_handle.close()


class FileRangeBody:
    """
    Lazy async byte producer over ``[start, end]`` of an open file.

    The body owns the file handle: it is closed once the span has been read, on a
    read error, or when ``aclose`` is called by the response (client disconnect,
    HEAD requests, bodies that are never consumed).
    """

    def __init__(self, file_handle, start: int, end: int, chunk_size: int, total_size: int = 0, progress: bool = False):
        self.file_handle = file_handle
        self.start = start
        self.end = end
        self.position = start
        self.chunk_size = chunk_size
        self.total_size = total_size
        self.progress = progress
        self.progress_bar = None
        self.bytes_transferred = 0
        self.closed = False
        self._positioned = False

    def __aiter__(self) -> "FileRangeBody":
        return self

    async def __anext__(self) -> bytes:
        if self.closed:
            raise StopAsyncIteration
        if self.position > self.end:
            await self.aclose()
            raise StopAsyncIteration

        try:
            if not self._positioned:
                await self.file_handle.seek(self.start)
                self._positioned = True
                if self.progress:
                    self.progress_bar = tqdm_asyncio(
                        total=self.total_size,
                        initial=self.start,
                        unit="B",
                        unit_scale=True,
                        unit_divisor=1024,
                        desc="Streaming",
                        ncols=100,
                        mininterval=1,
                    )
            chunk = await self.file_handle.read(min(self.chunk_size, self.end - self.position + 1))
        except OSError as e:
            await self.aclose()
            raise TransportAbort(f"Read error at byte {self.position}: {e}") from e

        if not chunk:
            await self.aclose()
            raise TransportAbort(f"File ended at byte {self.position}, expected data up to byte {self.end}")

        self.position += len(chunk)
        self.bytes_transferred += len(chunk)
        if self.progress_bar is not None:
            self.progress_bar.set_postfix_str(f"📤 : {format_bytes(self.bytes_transferred)}", refresh=False)
            self.progress_bar.update(len(chunk))
        return chunk

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.progress_bar is not None:
            self.progress_bar.close()
        await close_file_handle(self.file_handle)


@dataclass
class StreamResult:
    status_code: int
    headers: dict
    body: typing.Optional[FileRangeBody] = None


class RangeStreamer:
    """Serves an open file honoring single byte-range requests."""

    def __init__(self, chunk_size: typing.Optional[int] = None, enable_progress: typing.Optional[bool] = None):
        self.chunk_size = chunk_size or settings.stream_chunk_size
        self.enable_progress = settings.enable_streaming_progress if enable_progress is None else enable_progress

    async def stream(
        self, file_handle, total_size: int, range_header: typing.Optional[str], mime_type: str
    ) -> StreamResult:
        """
        Build the status, headers and lazy body for a file read.

        Args:
            file_handle: Open, seekable async file. Ownership passes to the result.
            total_size (int): Size of the file in bytes.
            range_header (str, optional): Raw value of the request's Range header.
            mime_type (str): Content type of the file.

        Returns:
            StreamResult: 200 with the full file, 206 with the requested span, or 416 without a body.
        """
        headers = {"Content-Type": mime_type, "Accept-Ranges": "bytes"}

        try:
            byte_range = parse_range_header(range_header, total_size)
        except RangeNotSatisfiable:
            logger.info(f"Range {range_header!r} not satisfiable for {total_size} bytes")
            await close_file_handle(file_handle)
            return StreamResult(416, {"Accept-Ranges": "bytes", "Content-Range": f"bytes */{total_size}"})

        if byte_range is None:
            status_code, start, end = 200, 0, total_size - 1
        else:
            status_code, start, end = 206, byte_range.start, byte_range.end
            headers["Content-Range"] = byte_range.content_range

        headers["Content-Length"] = str(end - start + 1)
        body = FileRangeBody(
            file_handle,
            start,
            end,
            self.chunk_size,
            total_size=total_size,
            progress=self.enable_progress,
        )
        return StreamResult(status_code, headers, body)


class EnhancedStreamingResponse(Response):
    body_iterator: typing.AsyncIterable[typing.Any]

    def __init__(
        self,
        content: typing.AsyncIterable[typing.Any],
        status_code: int = 200,
        headers: typing.Optional[typing.Mapping[str, str]] = None,
        media_type: typing.Optional[str] = None,
        background: typing.Optional[BackgroundTask] = None,
        on_start: typing.Optional[typing.Callable[[], None]] = None,
    ) -> None:
        self.body_iterator = content
        self.status_code = status_code
        self.media_type = self.media_type if media_type is None else media_type
        self.background = background
        self.on_start = on_start
        self.init_headers(headers)
        self.actual_content_length = 0
        self.abort_error: typing.Optional[TransportAbort] = None

    @staticmethod
    async def listen_for_disconnect(receive: Receive) -> None:
        """
        Listen for client disconnect events to stop streaming gracefully.
        """
        try:
            while True:
                message = await receive()
                if message["type"] == "http.disconnect":
                    logger.debug("Client disconnected")
                    break
        except Exception as e:
            logger.error(f"Error in listen_for_disconnect: {str(e)}")

    async def stream_response(self, send: Send) -> None:
        """
        Send the headers, then the body chunk by chunk.

        Once the headers are out a failing body can only abort the connection, so a
        TransportAbort is recorded and re-raised after cleanup instead of being turned
        into an error response.
        """
        await send(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            }
        )
        if self.on_start is not None:
            self.on_start()

        try:
            async for chunk in self.body_iterator:
                if not isinstance(chunk, (bytes, memoryview)):
                    chunk = chunk.encode(self.charset)
                try:
                    await send({"type": "http.response.body", "body": chunk, "more_body": True})
                except (ConnectionResetError, anyio.BrokenResourceError):
                    logger.info("Client disconnected during streaming")
                    return
                self.actual_content_length += len(chunk)

            await send({"type": "http.response.body", "body": b"", "more_body": False})
        except TransportAbort as e:
            logger.error(f"Aborting stream after {self.actual_content_length} bytes: {e.message}")
            self.abort_error = e

    async def close_body(self) -> None:
        aclose = getattr(self.body_iterator, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """
        ASGI entrypoint: run streaming and disconnect listener concurrently.
        """
        try:
            async with anyio.create_task_group() as task_group:
                stream_func = partial(self.stream_response, send)
                listen_func = partial(self.listen_for_disconnect, receive)

                async def wrap(func: typing.Callable[[], typing.Awaitable[None]]) -> None:
                    try:
                        await func()
                    except Exception:
                        logger.exception("Error in streaming task")
                        raise
                    finally:
                        task_group.cancel_scope.cancel()

                task_group.start_soon(wrap, stream_func)
                await wrap(listen_func)
        finally:
            await self.close_body()

        if self.abort_error is not None:
            raise self.abort_error

        if self.background is not None:
            await self.background()
