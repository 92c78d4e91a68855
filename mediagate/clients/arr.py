"""Radarr / Sonarr (v3 API) lookups for files already imported into a library"""

import logging
from typing import Any, Optional

import httpx

from ..config import SettingsCache
from ..errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class ArrClient:
    """Shared plumbing for the *arr family - X-Api-Key auth, JSON replies"""

    service = 'arr'
    display_name = 'Arr'

    def __init__(
        self,
        settings: SettingsCache,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self._http = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def enabled(self) -> bool:
        return self._settings.get(f'{self.service}_enabled') == 'true'

    async def _get(self, endpoint: str) -> Optional[Any]:
        """GET a JSON document; None when the item does not exist"""
        url = self._settings.get(f'{self.service}_url').rstrip('/')
        if not self.enabled or not url:
            raise UpstreamUnavailableError(f"{self.display_name} is not configured")

        try:
            response = await self._http.get(
                f"{url}{endpoint}",
                headers={'X-Api-Key': self._settings.get(f'{self.service}_api_key')},
            )
        except httpx.TimeoutException as e:
            logger.error(f"{self.display_name} timed out on {endpoint}: {e}")
            raise UpstreamUnavailableError(f"{self.display_name} did not respond in time") from e
        except httpx.HTTPError as e:
            logger.error(f"{self.display_name} request to {endpoint} failed: {e}")
            raise UpstreamUnavailableError(f"Cannot connect to {self.display_name}") from e

        if response.status_code == 404:
            return None
        if response.is_error:
            logger.error(f"{self.display_name} API error: {response.status_code} - {response.text[:200]}")
            raise UpstreamUnavailableError(f"{self.display_name} API error: {response.status_code}")
        return response.json()


class RadarrClient(ArrClient):
    service = 'radarr'
    display_name = 'Radarr'

    async def get_movie_file_path(self, movie_id: int) -> Optional[str]:
        movie = await self._get(f'/api/v3/movie/{movie_id}')
        if not movie:
            return None
        movie_file = movie.get('movieFile') or {}
        return movie_file.get('path') or None


class SonarrClient(ArrClient):
    service = 'sonarr'
    display_name = 'Sonarr'

    async def get_episode_file_path(self, episode_file_id: int) -> Optional[str]:
        episode_file = await self._get(f'/api/v3/episodefile/{episode_file_id}')
        if not episode_file:
            return None
        return episode_file.get('path') or None
