"""
mediagate - byte-range media streaming for a self-hosted torrent/library gateway
"""

__version__ = "2.1.0"
