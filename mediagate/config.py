"""
Configuration for the streaming gateway

Static settings come from environment variables so uvicorn workers inherit
whatever main() exported. Collaborator settings (URLs, credentials, path
mappings) can change at runtime and are read through SettingsCache.
"""

import json
import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ENV_PREFIX = "MEDIAGATE_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(ENV_PREFIX + name, default)


class Config:
    """Environment-backed configuration - properties are read on access"""

    @property
    def API_KEY(self) -> Optional[str]:
        return _env('API_KEY') or None

    @property
    def CHUNK_SIZE(self) -> int:
        return int(_env('CHUNK_SIZE', str(256 * 1024)))

    @property
    def EOF_RETRIES(self) -> int:
        return int(_env('EOF_RETRIES', '3'))

    @property
    def UPSTREAM_TIMEOUT(self) -> float:
        return float(_env('UPSTREAM_TIMEOUT', '10'))

    @property
    def SETTINGS_TTL(self) -> float:
        return float(_env('SETTINGS_TTL', '60'))

    @property
    def SETTINGS_FILE(self) -> Optional[str]:
        return _env('SETTINGS_FILE') or None

    @property
    def LOG_LEVEL(self) -> str:
        return _env('LOG_LEVEL', 'info')


config = Config()


# === Runtime settings ===

# Keys understood by the settings loader, with their environment fallback
SETTING_DEFAULTS = {
    'qbittorrent_url': ('QBITTORRENT_URL', 'http://localhost:8080'),
    'qbittorrent_username': ('QBITTORRENT_USERNAME', 'admin'),
    'qbittorrent_password': ('QBITTORRENT_PASSWORD', ''),
    'radarr_enabled': ('RADARR_ENABLED', ''),
    'radarr_url': ('RADARR_URL', ''),
    'radarr_api_key': ('RADARR_API_KEY', ''),
    'sonarr_enabled': ('SONARR_ENABLED', ''),
    'sonarr_url': ('SONARR_URL', ''),
    'sonarr_api_key': ('SONARR_API_KEY', ''),
    'path_mapping': ('PATH_MAPPING', ''),
}


def load_settings(settings_file: Optional[str] = None) -> Dict[str, str]:
    """Build the settings dict - settings file > environment > default"""
    values = {}
    for key, (env_name, default) in SETTING_DEFAULTS.items():
        values[key] = _env(env_name, default) or ''

    if settings_file and os.path.exists(settings_file):
        try:
            with open(settings_file, 'r', encoding='utf-8') as f:
                overrides = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Could not read settings file {settings_file}: {e}")
        else:
            for key, value in overrides.items():
                if key in SETTING_DEFAULTS and value not in (None, ''):
                    values[key] = str(value)

    # A service with a URL configured is enabled unless explicitly turned off
    for service in ('radarr', 'sonarr'):
        flag = values[f'{service}_enabled'].strip().lower()
        if not flag:
            values[f'{service}_enabled'] = 'true' if values[f'{service}_url'] else 'false'
        else:
            values[f'{service}_enabled'] = 'true' if flag in ('1', 'true', 'yes', 'on') else 'false'

    return values


class SettingsCache:
    """Short-TTL read-through cache over a settings loader

    The clock is injectable so expiry can be driven from tests.
    """

    def __init__(
        self,
        loader: Callable[[], Dict[str, str]],
        ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl
        self._clock = clock
        self._values: Dict[str, str] = {}
        self._expires_at = 0.0

    def _load(self) -> Dict[str, str]:
        now = self._clock()
        if self._values and now < self._expires_at:
            return self._values
        self._values = dict(self._loader())
        self._expires_at = now + self._ttl
        return self._values

    def get(self, key: str, default: str = '') -> str:
        return self._load().get(key) or default

    def clear(self) -> None:
        self._values = {}
        self._expires_at = 0.0

    def path_mappings(self) -> List[Tuple[str, str]]:
        return parse_path_mappings(self.get('path_mapping'))

    def map_path(self, remote_path: str) -> str:
        return map_path(remote_path, self.path_mappings())


# === Path mapping ===

def _normalize(path: str) -> str:
    return path.replace('\\', '/').rstrip('/')


def parse_path_mappings(value: str) -> List[Tuple[str, str]]:
    """Parse "remote=>local,remote2=>local2" into (remote, local) pairs"""
    mappings = []
    if not value:
        return mappings
    for pair in value.split(','):
        if '=>' not in pair:
            continue
        remote, local = pair.split('=>', 1)
        remote, local = _normalize(remote.strip()), _normalize(local.strip())
        if remote and local:
            mappings.append((remote, local))
    # Longest prefix wins
    mappings.sort(key=lambda m: len(m[0]), reverse=True)
    return mappings


def map_path(remote_path: str, mappings: List[Tuple[str, str]]) -> str:
    """Rewrite a collaborator-reported path to where it lives on this host"""
    if not mappings:
        return remote_path
    normalized = remote_path.replace('\\', '/')
    for remote, local in mappings:
        if normalized == remote or normalized.startswith(remote + '/'):
            result = local + normalized[len(remote):]
            if os.sep == '\\':
                return result.replace('/', '\\')
            return result
    return remote_path


def default_settings_cache(cfg: Any = None) -> SettingsCache:
    cfg = cfg or config
    return SettingsCache(lambda: load_settings(cfg.SETTINGS_FILE), ttl=cfg.SETTINGS_TTL)
