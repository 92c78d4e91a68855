from .arr import ArrClient, RadarrClient, SonarrClient
from .qbittorrent import PRIORITY_MAXIMAL, QBittorrentClient, TorrentFileEntry

__all__ = [
    "ArrClient",
    "RadarrClient",
    "SonarrClient",
    "QBittorrentClient",
    "TorrentFileEntry",
    "PRIORITY_MAXIMAL",
]
