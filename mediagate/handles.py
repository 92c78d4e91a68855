"""
Media handles - the opaque keys clients use to address a playable file

A handle is either a file inside a torrent or an item already imported into
a managed library (Radarr movie or Sonarr episode file). The set is closed:
code that needs to act on a handle checks for each variant explicitly.
"""

import re
from dataclasses import dataclass
from typing import Union

from .errors import BadRequestError

# v1 infohash is 40 hex chars (SHA-1), v2 is 64 (SHA-256)
_HASH_RE = re.compile(r'^(?:[0-9a-f]{40}|[0-9a-f]{64})$')

LIBRARY_KINDS = ('movie', 'episode')


@dataclass(frozen=True)
class TorrentFile:
    torrent_hash: str
    file_index: int

    def __str__(self) -> str:
        return f"torrent:{self.torrent_hash}/{self.file_index}"


@dataclass(frozen=True)
class LibraryItem:
    kind: str
    item_id: int

    def __str__(self) -> str:
        return f"{self.kind}:{self.item_id}"


MediaHandle = Union[TorrentFile, LibraryItem]


def torrent_file(torrent_hash: str, file_index: int) -> TorrentFile:
    """Validate and build a torrent file handle"""
    normalized = (torrent_hash or '').strip().lower()
    if not _HASH_RE.match(normalized):
        raise BadRequestError("Invalid torrent hash")
    if isinstance(file_index, bool) or not isinstance(file_index, int) or file_index < 0:
        raise BadRequestError("Invalid file index")
    return TorrentFile(normalized, file_index)


def library_item(kind: str, item_id: int) -> LibraryItem:
    """Validate and build a managed-library handle"""
    if kind not in LIBRARY_KINDS:
        raise BadRequestError(f"Unknown library item type: {kind}")
    if isinstance(item_id, bool) or not isinstance(item_id, int) or item_id <= 0:
        raise BadRequestError(f"Invalid {kind} id")
    return LibraryItem(kind, item_id)
