#!/usr/bin/env python3
"""
FastAPI streaming gateway for torrent and library media
- Async I/O for concurrent range requests
- Handles resolved through qBittorrent, Radarr and Sonarr
- Download readiness and priority elevation for torrents
- API key authentication
- Structured logging
- Health checks
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Header, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import __version__
from .clients import QBittorrentClient, RadarrClient, SonarrClient
from .config import Config, SettingsCache, config as default_config, default_settings_cache
from .errors import UnauthorizedError, install_error_handlers
from .handles import MediaHandle, library_item, torrent_file
from .ranges import negotiate
from .readiness import ReadinessGate
from .resolver import PathResolver
from .streaming import OutcomeCounter, build_stream_response

logger = logging.getLogger("mediagate")

# Security
security = HTTPBearer(auto_error=False)


def configure_logging(level: str = "info") -> None:
    logging.basicConfig(
        level=level.upper(),
        format='[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


# === Authentication ===

async def verify_api_key(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key")
):
    """Verify API key from header, bearer token or ?key= query parameter"""
    api_key = request.app.state.config.API_KEY
    if not api_key:
        return True  # No auth required if API key not configured

    if x_api_key == api_key:
        return True

    if credentials and credentials.credentials == api_key:
        return True

    # Browser <video> elements cannot set headers
    if request.query_params.get("key") == api_key:
        return True

    client = request.client.host if request.client else "unknown"
    logger.warning(f"Unauthorized request from {client}")
    raise UnauthorizedError()


# === Streaming endpoints ===

router = APIRouter(prefix="/api/stream", dependencies=[Depends(verify_api_key)])


async def _stream(request: Request, handle: MediaHandle):
    state = request.app.state
    range_header = request.headers.get("range")
    logger.info(f"Streaming request: {handle}" + (f" - Range: {range_header}" if range_header else ""))

    resolved = await state.resolver.resolve(handle)
    # Size is re-read for every request; a downloading file keeps growing
    byte_range = negotiate(range_header, resolved.size)

    return await build_stream_response(
        resolved,
        byte_range,
        chunk_size=state.config.CHUNK_SIZE,
        eof_retries=state.config.EOF_RETRIES,
        on_outcome=state.stream_stats.record,
    )


async def _info(request: Request, handle: MediaHandle) -> dict:
    availability = await request.app.state.gate.get_availability(handle)
    return {"success": True, "data": availability.to_dict()}


async def _prepare(request: Request, handle: MediaHandle) -> dict:
    await request.app.state.gate.prepare(handle)
    return {"success": True, "message": "File prepared for streaming"}


# Library routes go first so "movie"/"episode" are never taken for a torrent hash

@router.get("/movie/{movie_id}")
async def stream_movie(movie_id: int, request: Request):
    """Stream a movie imported by Radarr"""
    return await _stream(request, library_item("movie", movie_id))


@router.get("/movie/{movie_id}/info")
async def movie_info(movie_id: int, request: Request):
    return await _info(request, library_item("movie", movie_id))


@router.post("/movie/{movie_id}/prepare")
async def prepare_movie(movie_id: int, request: Request):
    return await _prepare(request, library_item("movie", movie_id))


@router.get("/episode/{episode_file_id}")
async def stream_episode(episode_file_id: int, request: Request):
    """Stream an episode file imported by Sonarr"""
    return await _stream(request, library_item("episode", episode_file_id))


@router.get("/episode/{episode_file_id}/info")
async def episode_info(episode_file_id: int, request: Request):
    return await _info(request, library_item("episode", episode_file_id))


@router.post("/episode/{episode_file_id}/prepare")
async def prepare_episode(episode_file_id: int, request: Request):
    return await _prepare(request, library_item("episode", episode_file_id))


@router.get("/{torrent_hash}/{file_index}")
async def stream_torrent_file(torrent_hash: str, file_index: int, request: Request):
    """Stream a file from a torrent, possibly while it is still downloading"""
    return await _stream(request, torrent_file(torrent_hash, file_index))


@router.get("/{torrent_hash}/{file_index}/info")
async def torrent_file_info(torrent_hash: str, file_index: int, request: Request):
    """Name, size, MIME type and download progress of a torrent file"""
    return await _info(request, torrent_file(torrent_hash, file_index))


@router.post("/{torrent_hash}/{file_index}/prepare")
async def prepare_torrent_file(torrent_hash: str, file_index: int, request: Request):
    """Ask qBittorrent to download this file first"""
    return await _prepare(request, torrent_file(torrent_hash, file_index))


# === Application ===

def create_app(
    config: Optional[Config] = None,
    resolver: Optional[PathResolver] = None,
    gate: Optional[ReadinessGate] = None,
    settings: Optional[SettingsCache] = None,
) -> FastAPI:
    """Build the application; collaborators are created unless passed in"""
    config = config or default_config
    owned_clients = []

    if resolver is None:
        settings = settings or default_settings_cache(config)
        timeout = config.UPSTREAM_TIMEOUT
        torrents = QBittorrentClient(settings, timeout=timeout)
        radarr = RadarrClient(settings, timeout=timeout)
        sonarr = SonarrClient(settings, timeout=timeout)
        owned_clients = [torrents, radarr, sonarr]
        resolver = PathResolver(settings, torrents, radarr, sonarr)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Worker processes start from the factory, not from main()
        configure_logging(config.LOG_LEVEL)
        logger.info("=" * 70)
        logger.info(f"Media stream gateway {__version__} starting")
        logger.info(f"qBittorrent: {resolver.settings.get('qbittorrent_url')}")
        logger.info(f"Radarr: {resolver.settings.get('radarr_url') or 'not configured'}")
        logger.info(f"Sonarr: {resolver.settings.get('sonarr_url') or 'not configured'}")
        logger.info(f"API authentication: {'Enabled' if config.API_KEY else 'Disabled'}")
        logger.info("=" * 70)
        yield
        logger.info("Server shutting down...")
        for client in owned_clients:
            await client.aclose()

    app = FastAPI(
        title="Media Stream Gateway",
        description="Byte-range video streaming for torrent and library media",
        version=__version__,
        lifespan=lifespan,
    )

    # Browser players need to read the range headers cross-origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
    )

    app.state.config = config
    app.state.resolver = resolver
    app.state.gate = gate or ReadinessGate(resolver)
    app.state.stream_stats = OutcomeCounter()

    install_error_handlers(app)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "qbittorrent": {
                "url": resolver.settings.get('qbittorrent_url'),
                "connected": await resolver.torrents.check_connection(),
            },
            "radarr": bool(resolver.settings.get('radarr_url')),
            "sonarr": bool(resolver.settings.get('sonarr_url')),
            "streams": app.state.stream_stats.to_dict(),
        }

    app.include_router(router)
    return app


# === Main Entry Point ===

def main():
    """Main entry point"""
    import argparse

    parser = argparse.ArgumentParser(
        description='Byte-range streaming gateway for qBittorrent, Radarr and Sonarr media',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        '--port', '-p', type=int, default=3003,
        help='Port to listen on (default: 3003)'
    )
    parser.add_argument(
        '--host', type=str, default='0.0.0.0',
        help='Host to bind to (default: 0.0.0.0)'
    )
    parser.add_argument(
        '--api-key', type=str, default=None,
        help='API key for authentication (optional)'
    )
    parser.add_argument(
        '--settings-file', type=str, default=None,
        help='JSON file with collaborator settings, re-read every settings TTL'
    )
    parser.add_argument(
        '--workers', type=int, default=4,
        help='Number of worker processes (default: 4)'
    )
    parser.add_argument(
        '--log-level', type=str, default=default_config.LOG_LEVEL,
        choices=['debug', 'info', 'warning', 'error'],
        help='Log level (default: info)'
    )

    args = parser.parse_args()
    configure_logging(args.log_level)

    # Set environment variables so worker processes inherit them
    if args.api_key:
        os.environ['MEDIAGATE_API_KEY'] = args.api_key
    if args.settings_file:
        if not os.path.isfile(args.settings_file):
            logger.error(f"Settings file does not exist: {args.settings_file}")
            sys.exit(1)
        os.environ['MEDIAGATE_SETTINGS_FILE'] = os.path.abspath(args.settings_file)
    os.environ['MEDIAGATE_LOG_LEVEL'] = args.log_level

    uvicorn.run(
        "mediagate.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        workers=args.workers,
        log_level=args.log_level,
        access_log=True,
        limit_concurrency=100,
        timeout_keep_alive=300
    )


if __name__ == '__main__':
    main()
