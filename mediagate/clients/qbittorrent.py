"""
qBittorrent Web API client (v2)

Only the calls the streaming path needs: file listing, save path and file
priority. The session cookie is cached and refreshed once when the engine
answers 403.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

import httpx

from ..config import SettingsCache
from ..errors import NotFoundError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

# qBittorrent file priorities: 0 skip, 1 normal, 6 high, 7 maximal
PRIORITY_MAXIMAL = 7

SESSION_LIFETIME = 50 * 60


@dataclass(frozen=True)
class TorrentFileEntry:
    index: int
    name: str
    size: int
    progress: float
    priority: int


class QBittorrentClient:
    def __init__(
        self,
        settings: SettingsCache,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings
        self._http = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)
        self._clock = clock
        self._cookie: Optional[str] = None
        self._cookie_expiry = 0.0

    @property
    def base_url(self) -> str:
        return self._settings.get('qbittorrent_url').rstrip('/')

    async def aclose(self) -> None:
        await self._http.aclose()

    def _forget_session(self) -> None:
        self._cookie = None
        self._cookie_expiry = 0.0

    async def _send(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{endpoint}"
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"qBittorrent timed out on {endpoint}: {e}")
            raise UpstreamUnavailableError("qBittorrent did not respond in time") from e
        except httpx.HTTPError as e:
            logger.error(f"qBittorrent request to {endpoint} failed: {e}")
            raise UpstreamUnavailableError("Cannot connect to qBittorrent") from e

    async def _authenticate(self) -> None:
        if self._cookie and self._clock() < self._cookie_expiry:
            return

        response = await self._send(
            'POST',
            '/api/v2/auth/login',
            data={
                'username': self._settings.get('qbittorrent_username'),
                'password': self._settings.get('qbittorrent_password'),
            },
        )
        if response.status_code != 200 or response.text.strip() != 'Ok.':
            logger.error(f"qBittorrent authentication failed: {response.status_code} {response.text[:100]}")
            raise UpstreamUnavailableError("Failed to authenticate with qBittorrent")

        sid = response.cookies.get('SID')
        self._cookie = f"SID={sid}" if sid else None
        self._cookie_expiry = self._clock() + SESSION_LIFETIME
        logger.info("qBittorrent authenticated successfully")

    async def _request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        """Authenticated request - re-login and retry once on 403"""
        for attempt in range(2):
            await self._authenticate()
            headers = {'Cookie': self._cookie} if self._cookie else {}
            response = await self._send(method, endpoint, headers=headers, **kwargs)

            if response.status_code == 403 and attempt == 0:
                logger.info("qBittorrent session expired, re-authenticating")
                self._forget_session()
                continue

            if response.status_code == 404:
                raise NotFoundError("Torrent not found")
            if response.is_error:
                logger.error(f"qBittorrent API error on {endpoint}: {response.status_code}")
                raise UpstreamUnavailableError(f"qBittorrent API error: {response.status_code}")
            return response

        raise UpstreamUnavailableError("qBittorrent rejected the session")

    async def check_connection(self) -> bool:
        try:
            self._forget_session()
            await self._authenticate()
            return True
        except UpstreamUnavailableError:
            return False

    async def list_files(self, torrent_hash: str) -> List[TorrentFileEntry]:
        response = await self._request('GET', '/api/v2/torrents/files', params={'hash': torrent_hash})
        files = []
        for position, item in enumerate(response.json()):
            files.append(TorrentFileEntry(
                # Older engines omit "index" and rely on list order
                index=int(item.get('index', position)),
                name=item['name'],
                size=int(item.get('size', 0)),
                progress=float(item.get('progress', 0.0)),
                priority=int(item.get('priority', 1)),
            ))
        return files

    async def get_save_path(self, torrent_hash: str) -> str:
        response = await self._request('GET', '/api/v2/torrents/properties', params={'hash': torrent_hash})
        save_path = response.json().get('save_path')
        if not save_path:
            raise NotFoundError("Torrent has no save path")
        return save_path

    async def set_file_priority(self, torrent_hash: str, file_indexes: Iterable[int], priority: int) -> None:
        await self._request(
            'POST',
            '/api/v2/torrents/filePrio',
            data={
                'hash': torrent_hash,
                'id': '|'.join(str(i) for i in file_indexes),
                'priority': str(priority),
            },
        )
