"""Playable container detection and MIME types, decided by extension only"""

import os

VIDEO_MIME_TYPES = {
    '.mp4': 'video/mp4',
    '.mkv': 'video/x-matroska',
    '.avi': 'video/x-msvideo',
    '.mov': 'video/quicktime',
    '.wmv': 'video/x-ms-wmv',
    '.flv': 'video/x-flv',
    '.webm': 'video/webm',
    '.m4v': 'video/x-m4v',
    '.mpg': 'video/mpeg',
    '.mpeg': 'video/mpeg',
    '.3gp': 'video/3gpp',
    '.ts': 'video/mp2t',
    '.m2ts': 'video/mp2t',
}

VIDEO_EXTENSIONS = list(VIDEO_MIME_TYPES)

DEFAULT_MIME_TYPE = 'application/octet-stream'


def file_extension(file_name: str) -> str:
    # Torrent file names use '/' even when the engine runs on Windows
    base = file_name.replace('\\', '/').rsplit('/', 1)[-1]
    return os.path.splitext(base)[1].lower()


def is_playable(file_name: str) -> bool:
    """Check if a file name has a playable video container extension"""
    return file_extension(file_name) in VIDEO_MIME_TYPES


def mime_type_for(file_name: str) -> str:
    return VIDEO_MIME_TYPES.get(file_extension(file_name), DEFAULT_MIME_TYPE)
