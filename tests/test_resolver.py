import os

import pytest

from conftest import TORRENT_HASH, FakeRadarr, FakeSonarr, FakeTorrents, run, static_settings
from mediagate.clients import TorrentFileEntry
from mediagate.errors import BadRequestError, NotFoundError, UpstreamUnavailableError
from mediagate.handles import LibraryItem, TorrentFile, library_item, torrent_file
from mediagate.resolver import PathResolver


def test_torrent_file_resolves_to_save_path(resolver, media_dir):
    resolved = run(resolver.resolve(TorrentFile(TORRENT_HASH, 0)))
    assert resolved.path == os.path.join(str(media_dir), "Show.S01", "episode1.mkv")
    assert resolved.name == "episode1.mkv"
    assert resolved.size == 10000
    assert resolved.mime_type == "video/x-matroska"
    assert resolved.is_playable
    assert resolved.progress == 0.5


def test_size_is_read_fresh_each_time(resolver, media_dir):
    handle = TorrentFile(TORRENT_HASH, 0)
    assert run(resolver.resolve(handle)).size == 10000
    with open(media_dir / "Show.S01" / "episode1.mkv", "ab") as f:
        f.write(b"\0" * 500)
    assert run(resolver.resolve(handle)).size == 10500


def test_unknown_file_index_is_not_found(resolver):
    with pytest.raises(NotFoundError):
        run(resolver.resolve(TorrentFile(TORRENT_HASH, 9)))


def test_unknown_torrent_is_not_found(resolver):
    with pytest.raises(NotFoundError):
        run(resolver.resolve(TorrentFile("c" * 40, 0)))


def test_subtitles_are_rejected_before_touching_disk(resolver):
    with pytest.raises(BadRequestError):
        run(resolver.resolve(TorrentFile(TORRENT_HASH, 1)))


def test_metadata_without_file_on_disk_is_not_found(resolver):
    with pytest.raises(NotFoundError):
        run(resolver.resolve(TorrentFile(TORRENT_HASH, 2)))


def test_directory_is_not_a_file(media_dir):
    torrents = FakeTorrents(str(media_dir), files=[TorrentFileEntry(0, "Show.S01", 0, 1.0, 1)])
    (media_dir / "folder.mkv").mkdir()
    torrents.files[TORRENT_HASH].append(TorrentFileEntry(1, "folder.mkv", 0, 1.0, 1))
    resolver = PathResolver(static_settings(), torrents)
    with pytest.raises(NotFoundError):
        run(resolver.resolve(TorrentFile(TORRENT_HASH, 1)))


def test_names_escaping_save_path_are_rejected(media_dir):
    torrents = FakeTorrents(str(media_dir / "Show.S01"), files=[TorrentFileEntry(0, "../Movie.2020.mp4", 4096, 1.0, 1)])
    resolver = PathResolver(static_settings(), torrents)
    with pytest.raises(NotFoundError):
        run(resolver.resolve(TorrentFile(TORRENT_HASH, 0)))


def test_path_mapping_applies_to_torrent_paths(media_dir):
    torrents = FakeTorrents("/remote/downloads", files=[TorrentFileEntry(0, "Movie.2020.mp4", 4096, 1.0, 1)])
    settings = static_settings(path_mapping=f"/remote/downloads=>{media_dir}")
    resolver = PathResolver(settings, torrents)
    resolved = run(resolver.resolve(TorrentFile(TORRENT_HASH, 0)))
    assert resolved.path == str(media_dir / "Movie.2020.mp4")
    assert resolved.mime_type == "video/mp4"


def test_upstream_errors_propagate(media_dir):
    resolver = PathResolver(static_settings(), FakeTorrents(str(media_dir), unavailable=True))
    with pytest.raises(UpstreamUnavailableError):
        run(resolver.resolve(TorrentFile(TORRENT_HASH, 0)))


def test_movie_resolves_through_radarr(resolver, media_dir):
    resolved = run(resolver.resolve(LibraryItem("movie", 7)))
    assert resolved.path == str(media_dir / "Movie.2020.mp4")
    assert resolved.size == 4096
    assert resolved.progress == 1.0


def test_movie_deleted_from_disk_is_not_found(resolver):
    with pytest.raises(NotFoundError):
        run(resolver.resolve(LibraryItem("movie", 8)))


def test_movie_without_file_is_not_found(resolver):
    with pytest.raises(NotFoundError):
        run(resolver.resolve(LibraryItem("movie", 99)))


def test_episode_resolves_through_sonarr(media_dir):
    sonarr = FakeSonarr({3: str(media_dir / "Show.S01" / "episode1.mkv")})
    resolver = PathResolver(static_settings(), FakeTorrents(str(media_dir)), FakeRadarr(), sonarr)
    assert run(resolver.resolve(LibraryItem("episode", 3))).size == 10000


def test_handle_validation():
    assert torrent_file("A" * 40, 0) == TorrentFile("a" * 40, 0)
    assert torrent_file("f" * 64, 3).file_index == 3
    with pytest.raises(BadRequestError):
        torrent_file("not-a-hash", 0)
    with pytest.raises(BadRequestError):
        torrent_file("a" * 40, -1)
    with pytest.raises(BadRequestError):
        library_item("movie", 0)
    with pytest.raises(BadRequestError):
        library_item("album", 3)
    assert str(library_item("episode", 4)) == "episode:4"
