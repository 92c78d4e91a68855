"""
Readiness gate for files that may still be downloading

Torrents fill out of order, so a file is only offered for playback once a
small share of it is on disk. prepare() asks the engine to fetch the file
first; it never waits for data.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from .clients import PRIORITY_MAXIMAL
from .errors import BadRequestError, NotFoundError, UpstreamUnavailableError
from .formats import is_playable, mime_type_for
from .handles import LibraryItem, MediaHandle, TorrentFile
from .resolver import PathResolver, current_size

logger = logging.getLogger(__name__)

# At least 1% downloaded
MIN_READY_PROGRESS = 0.01


class StreamState(str, Enum):
    UNKNOWN = "unknown"
    DOWNLOADING = "downloading"
    READY = "ready"
    COMPLETE = "complete"


def stream_state(progress: float) -> StreamState:
    if progress >= 1.0:
        return StreamState.COMPLETE
    if progress >= MIN_READY_PROGRESS:
        return StreamState.READY
    if progress > 0:
        return StreamState.DOWNLOADING
    return StreamState.UNKNOWN


@dataclass(frozen=True)
class Availability:
    name: str
    size: int
    mime_type: str
    progress: float
    is_playable: bool

    @property
    def state(self) -> StreamState:
        return stream_state(self.progress)

    @property
    def is_ready(self) -> bool:
        return self.is_playable and self.state in (StreamState.READY, StreamState.COMPLETE)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "size": self.size,
            "mimeType": self.mime_type,
            "progress": self.progress,
            "isReady": self.is_ready,
        }


class ReadinessGate:
    def __init__(self, resolver: PathResolver):
        self.resolver = resolver

    async def get_availability(self, handle: MediaHandle) -> Availability:
        location = await self.resolver.locate(handle)

        if not is_playable(location.name):
            raise BadRequestError("File is not a playable video")

        progress = min(max(location.progress, 0.0), 1.0)
        size = location.reported_size
        if size is None:
            # Library items have no engine-reported size and must already be on disk
            size = await current_size(location.path)
            if size is None:
                logger.warning(f"{handle} is recorded at {location.path} but missing on disk")
                raise NotFoundError("File not found on disk")

        return Availability(
            name=location.name,
            size=size,
            mime_type=mime_type_for(location.name),
            progress=progress,
            is_playable=True,
        )

    async def prepare(self, handle: MediaHandle) -> None:
        if isinstance(handle, LibraryItem):
            # Already imported; nothing to fetch
            await self.resolver.locate(handle)
            return
        if not isinstance(handle, TorrentFile):
            raise TypeError(f"Unsupported media handle: {handle!r}")

        # Surfaces NotFoundError for unknown torrents or indexes
        await self.resolver.locate(handle)

        try:
            await self.resolver.torrents.set_file_priority(
                handle.torrent_hash, [handle.file_index], PRIORITY_MAXIMAL
            )
        except UpstreamUnavailableError as e:
            logger.warning(f"Priority change for {handle} rejected, ignoring: {e}")
            return
        logger.info(f"Prepared file {handle.file_index} of {handle.torrent_hash} for streaming")
