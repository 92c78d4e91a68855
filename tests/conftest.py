import asyncio

import pytest
from fastapi.testclient import TestClient

from mediagate.app import create_app
from mediagate.clients import TorrentFileEntry
from mediagate.config import SettingsCache
from mediagate.errors import NotFoundError, UpstreamUnavailableError
from mediagate.resolver import PathResolver

TORRENT_HASH = "a" * 40


def run(coro):
    return asyncio.run(coro)


def make_payload(size: int) -> bytes:
    return bytes(i % 251 for i in range(size))


class FakeTorrents:
    """In-memory stand-in for QBittorrentClient"""

    def __init__(self, save_path: str, files=None, unavailable: bool = False):
        self.save_path = save_path
        self.files = {TORRENT_HASH: list(files or [])}
        self.unavailable = unavailable
        self.reject_priority = False
        self.priority_calls = []

    def _check(self, torrent_hash):
        if self.unavailable:
            raise UpstreamUnavailableError("Cannot connect to qBittorrent")
        if torrent_hash not in self.files:
            raise NotFoundError("Torrent not found")

    async def list_files(self, torrent_hash):
        self._check(torrent_hash)
        return list(self.files[torrent_hash])

    async def get_save_path(self, torrent_hash):
        self._check(torrent_hash)
        return self.save_path

    async def set_file_priority(self, torrent_hash, file_indexes, priority):
        self._check(torrent_hash)
        if self.reject_priority:
            raise UpstreamUnavailableError("qBittorrent API error: 409")
        self.priority_calls.append((torrent_hash, list(file_indexes), priority))

    async def check_connection(self):
        return not self.unavailable

    def set_progress(self, index, progress):
        self.files[TORRENT_HASH] = [
            TorrentFileEntry(f.index, f.name, f.size, progress, f.priority) if f.index == index else f
            for f in self.files[TORRENT_HASH]
        ]


class FakeRadarr:
    def __init__(self, paths=None):
        self.paths = dict(paths or {})

    async def get_movie_file_path(self, movie_id):
        return self.paths.get(movie_id)


class FakeSonarr:
    def __init__(self, paths=None):
        self.paths = dict(paths or {})

    async def get_episode_file_path(self, episode_file_id):
        return self.paths.get(episode_file_id)


def static_settings(**values):
    base = {
        'qbittorrent_url': 'http://qbittorrent.local:8080',
        'qbittorrent_username': 'admin',
        'qbittorrent_password': 'adminadmin',
        'radarr_enabled': 'true',
        'radarr_url': 'http://radarr.local:7878',
        'radarr_api_key': 'radarr-key',
        'sonarr_enabled': 'false',
        'sonarr_url': '',
        'sonarr_api_key': '',
        'path_mapping': '',
    }
    base.update(values)
    return SettingsCache(lambda: base)


@pytest.fixture
def media_dir(tmp_path):
    root = tmp_path / "downloads"
    (root / "Show.S01").mkdir(parents=True)
    (root / "Show.S01" / "episode1.mkv").write_bytes(make_payload(10000))
    (root / "Show.S01" / "episode1.srt").write_bytes(b"1\n00:00:01,000 --> 00:00:02,000\nHi\n")
    (root / "Movie.2020.mp4").write_bytes(make_payload(4096))
    return root


@pytest.fixture
def torrents(media_dir):
    return FakeTorrents(
        str(media_dir),
        files=[
            TorrentFileEntry(0, "Show.S01/episode1.mkv", 10000, 0.5, 1),
            TorrentFileEntry(1, "Show.S01/episode1.srt", 36, 1.0, 1),
            TorrentFileEntry(2, "Show.S01/episode2.mkv", 20000, 0.0, 1),
        ],
    )


@pytest.fixture
def radarr(media_dir):
    return FakeRadarr({
        7: str(media_dir / "Movie.2020.mp4"),
        8: str(media_dir / "deleted.mkv"),
    })


@pytest.fixture
def resolver(torrents, radarr):
    return PathResolver(static_settings(), torrents, radarr, FakeSonarr())


@pytest.fixture
def app(resolver, monkeypatch):
    monkeypatch.delenv("MEDIAGATE_API_KEY", raising=False)
    monkeypatch.setenv("MEDIAGATE_CHUNK_SIZE", "1024")
    monkeypatch.setenv("MEDIAGATE_EOF_RETRIES", "0")
    return create_app(resolver=resolver)


@pytest.fixture
def client(app):
    return TestClient(app)


def stream_url(index: int, torrent_hash: str = TORRENT_HASH) -> str:
    return f"/api/stream/{torrent_hash}/{index}"
