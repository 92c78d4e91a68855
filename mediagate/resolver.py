"""
Path resolution - handle -> file on this host

The collaborators only know where a file *should* be; every resolution is
checked against the local filesystem and the size is re-read each time,
since a torrent file keeps growing while it downloads.
"""

import logging
import os
import stat
from dataclasses import dataclass
from typing import Optional

import aiofiles.os

from .clients import QBittorrentClient, RadarrClient, SonarrClient
from .config import SettingsCache
from .errors import BadRequestError, NotFoundError
from .formats import is_playable, mime_type_for
from .handles import LibraryItem, MediaHandle, TorrentFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Location:
    """Where a collaborator says a file lives, before touching the disk"""
    path: str
    name: str
    progress: float
    reported_size: Optional[int] = None


@dataclass(frozen=True)
class ResolvedFile:
    path: str
    name: str
    size: int
    mime_type: str
    is_playable: bool
    progress: float = 1.0


class PathResolver:
    def __init__(
        self,
        settings: SettingsCache,
        torrents: QBittorrentClient,
        radarr: Optional[RadarrClient] = None,
        sonarr: Optional[SonarrClient] = None,
    ):
        self.settings = settings
        self.torrents = torrents
        self.radarr = radarr
        self.sonarr = sonarr

    async def locate(self, handle: MediaHandle) -> Location:
        """Ask the owning collaborator for the file's path (no disk access)"""
        if isinstance(handle, TorrentFile):
            return await self._locate_torrent_file(handle)
        if isinstance(handle, LibraryItem):
            return await self._locate_library_item(handle)
        raise TypeError(f"Unsupported media handle: {handle!r}")

    async def _locate_torrent_file(self, handle: TorrentFile) -> Location:
        files = await self.torrents.list_files(handle.torrent_hash)
        entry = next((f for f in files if f.index == handle.file_index), None)
        if entry is None:
            raise NotFoundError("File not found")

        save_path = await self.torrents.get_save_path(handle.torrent_hash)
        remote_path = f"{save_path.rstrip('/')}/{entry.name}"
        local_path = os.path.normpath(self.settings.map_path(remote_path))
        local_root = os.path.normpath(self.settings.map_path(save_path))

        # File names come from torrent metadata and must stay under the save path
        if not _is_within(local_path, local_root):
            logger.warning(f"Rejecting {handle}: {entry.name!r} escapes save path {save_path}")
            raise NotFoundError("File not found")

        return Location(
            path=local_path,
            name=os.path.basename(entry.name.replace('\\', '/')),
            progress=entry.progress,
            reported_size=entry.size,
        )

    async def _locate_library_item(self, handle: LibraryItem) -> Location:
        if handle.kind == 'movie':
            if self.radarr is None:
                raise NotFoundError("Movie library is not available")
            remote_path = await self.radarr.get_movie_file_path(handle.item_id)
        elif handle.kind == 'episode':
            if self.sonarr is None:
                raise NotFoundError("Series library is not available")
            remote_path = await self.sonarr.get_episode_file_path(handle.item_id)
        else:
            raise BadRequestError(f"Unknown library item type: {handle.kind}")

        if not remote_path:
            raise NotFoundError(f"No file recorded for {handle}")

        local_path = os.path.normpath(self.settings.map_path(remote_path))
        return Location(path=local_path, name=os.path.basename(local_path), progress=1.0)

    async def resolve(self, handle: MediaHandle) -> ResolvedFile:
        """Resolve a handle to a playable, readable file with its current size"""
        location = await self.locate(handle)

        if not is_playable(location.name):
            raise BadRequestError("File is not a playable video")

        size = await current_size(location.path)
        if size is None:
            logger.warning(f"{handle} points at {location.path}, which is not on disk")
            raise NotFoundError("File not found on disk")

        return ResolvedFile(
            path=location.path,
            name=location.name,
            size=size,
            mime_type=mime_type_for(location.name),
            is_playable=True,
            progress=location.progress,
        )


def _is_within(path: str, root: str) -> bool:
    try:
        return os.path.commonpath([root, path]) == root
    except ValueError:
        return False


async def current_size(path: str) -> Optional[int]:
    """Size of a regular readable file, or None if there is no such file"""
    try:
        st = await aiofiles.os.stat(path)
    except OSError:
        return None
    if not stat.S_ISREG(st.st_mode):
        return None
    if not await aiofiles.os.access(path, os.R_OK):
        return None
    return st.st_size
