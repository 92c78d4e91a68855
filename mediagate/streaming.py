"""
Chunked file server - streams exactly one byte range of a file

Each request opens its own handle at its own offset; nothing is shared
between concurrent requests for the same file.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import AsyncIterator, Callable, Optional

import aiofiles
import anyio
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from .errors import StreamAborted, StreamIOError
from .ranges import ByteRange
from .resolver import ResolvedFile

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 256 * 1024


class StreamingOutcome(str, Enum):
    COMPLETED = "completed"
    CLIENT_DISCONNECTED = "client_disconnected"
    IO_ERROR = "io_error"


OutcomeCallback = Callable[[StreamingOutcome, int], None]


class OutcomeCounter:
    """Running totals of stream outcomes, reported by /health"""

    def __init__(self):
        self.counts = {outcome.value: 0 for outcome in StreamingOutcome}
        self.bytes_sent = 0

    def record(self, outcome: StreamingOutcome, bytes_sent: int) -> None:
        self.counts[outcome.value] += 1
        self.bytes_sent += bytes_sent

    def to_dict(self) -> dict:
        return {**self.counts, "bytesSent": self.bytes_sent}


class StreamAttempt:
    """Terminal outcome of one stream, reported exactly once

    The first finish() wins; later calls are ignored. Nothing here awaits, so
    a cancelled task can still report.
    """

    def __init__(self, label: str, content_length: int, on_outcome: Optional[OutcomeCallback] = None):
        self.label = label
        self.content_length = content_length
        self.on_outcome = on_outcome
        self.bytes_sent = 0
        self.outcome: Optional[StreamingOutcome] = None
        self.started = time.monotonic()

    def finish(self, outcome: StreamingOutcome) -> None:
        if self.outcome is not None:
            return
        self.outcome = outcome
        elapsed = time.monotonic() - self.started
        message = (
            f"Stream {outcome.value}: {self.label} "
            f"{self.bytes_sent}/{self.content_length} bytes in {elapsed:.2f}s"
        )
        if outcome is StreamingOutcome.IO_ERROR:
            logger.error(message)
        else:
            logger.info(message)
        if self.on_outcome is not None:
            self.on_outcome(outcome, self.bytes_sent)


async def close_shielded(f) -> None:
    # Disconnects arrive as anyio cancellation, which would hit this await again
    with anyio.CancelScope(shield=True):
        await f.close()


def eof_backoff(attempt: int) -> float:
    """Exponential backoff, max 1 second per retry"""
    return min(1.0, 0.1 * (1.5 ** min(attempt, 10)))


async def open_at(path: str, offset: int):
    """Open a file for reading positioned at offset - raises StreamIOError"""
    try:
        f = await aiofiles.open(path, 'rb')
    except OSError as e:
        logger.error(f"Cannot open {path}: {e}")
        raise StreamIOError() from e
    try:
        await f.seek(offset)
    except OSError as e:
        await f.close()
        logger.error(f"Cannot seek {path} to {offset}: {e}")
        raise StreamIOError() from e
    return f


async def stream_file_range(
    f,
    start: int,
    end: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    eof_retries: int = 3,
    on_outcome: Optional[OutcomeCallback] = None,
    label: str = "",
    attempt: Optional[StreamAttempt] = None,
) -> AsyncIterator[bytes]:
    """Yield bytes [start, end] from an already positioned file, then close it"""
    content_length = end - start + 1
    if attempt is None:
        attempt = StreamAttempt(label, content_length, on_outcome)
    remaining = content_length
    empty_reads = 0
    outcome = StreamingOutcome.IO_ERROR

    try:
        while remaining > 0:
            to_read = min(chunk_size, remaining)
            try:
                chunk = await f.read(to_read)
            except OSError as e:
                logger.error(f"Read failed at byte {start + attempt.bytes_sent} of {attempt.label}: {e}")
                raise StreamAborted(f"read failed at byte {start + attempt.bytes_sent}") from e

            if not chunk:
                # Nothing on disk past this offset yet
                if empty_reads >= eof_retries:
                    logger.warning(
                        f"Hit EOF at {start + attempt.bytes_sent} of {attempt.label}, "
                        f"sent {attempt.bytes_sent}/{content_length} bytes"
                    )
                    raise StreamAborted(f"unexpected EOF at byte {start + attempt.bytes_sent}")
                empty_reads += 1
                await asyncio.sleep(eof_backoff(empty_reads))
                continue

            empty_reads = 0
            attempt.bytes_sent += len(chunk)
            remaining -= len(chunk)
            yield chunk

        outcome = StreamingOutcome.COMPLETED
    except (GeneratorExit, asyncio.CancelledError):
        outcome = StreamingOutcome.CLIENT_DISCONNECTED
        raise
    finally:
        # Report before awaiting anything
        attempt.finish(outcome)
        await close_shielded(f)


class MediaStreamResponse(StreamingResponse):
    """StreamingResponse that always closes its body generator

    Starlette abandons the iterator when the client goes away; closing it
    here releases the file handle right away instead of at garbage collection.
    A generator that never started does not run its cleanup, so the file is
    closed and the attempt reported here as well.
    """

    def __init__(self, content, file=None, attempt: Optional[StreamAttempt] = None, **kwargs):
        super().__init__(content, **kwargs)
        self.file = file
        self.attempt = attempt

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                aclose = getattr(self.body_iterator, 'aclose', None)
                if aclose is not None:
                    await aclose()
                if self.file is not None:
                    await self.file.close()
            if self.attempt is not None:
                # No-op unless the body was never pulled
                self.attempt.finish(StreamingOutcome.CLIENT_DISCONNECTED)


def stream_headers(resolved: ResolvedFile, byte_range: ByteRange) -> dict:
    headers = {
        "Content-Type": resolved.mime_type,
        "Accept-Ranges": "bytes",
        "Cache-Control": "no-cache",
        "Content-Length": str(max(byte_range.length, 0)),
    }
    if byte_range.is_partial:
        headers["Content-Range"] = byte_range.content_range(resolved.size)
    return headers


async def build_stream_response(
    resolved: ResolvedFile,
    byte_range: ByteRange,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    eof_retries: int = 3,
    on_outcome: Optional[OutcomeCallback] = None,
) -> MediaStreamResponse:
    """Open the file, then hand a chunk generator to the response

    Opening happens before any header is committed, so a file that cannot be
    read still gets a clean 500.
    """
    f = await open_at(resolved.path, byte_range.start)

    if byte_range.is_partial:
        logger.info(
            f"Streaming {byte_range.start}-{byte_range.end}/{resolved.size} "
            f"({byte_range.length / 1024 / 1024:.2f} MB) of {resolved.name}"
        )
    else:
        logger.info(f"Streaming full file: {resolved.name} ({resolved.size / 1024 / 1024 / 1024:.2f} GB)")

    attempt = StreamAttempt(resolved.name, byte_range.length, on_outcome)
    body = stream_file_range(
        f,
        byte_range.start,
        byte_range.end,
        chunk_size=chunk_size,
        eof_retries=eof_retries,
        attempt=attempt,
    )
    return MediaStreamResponse(
        body,
        file=f,
        attempt=attempt,
        status_code=byte_range.status_code,
        headers=stream_headers(resolved, byte_range),
        media_type=resolved.mime_type,
    )
