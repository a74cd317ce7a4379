"""
Application configuration manager.
Stores settings in a JSON file under the app support dir; secrets and
deployment paths come from environment variables.
"""

import json
import logging
import os
from pathlib import Path

from videoscribe.core.constants import (
    CONFIG_PATH, DB_PATH, DEFAULT_TEMP_ROOT, DEFAULT_COOKIES_PATH,
    DEFAULT_TOOLCHAIN_DIRS, CookiesMode, ChunkFailurePolicy,
    CHUNK_MINUTES, CHUNK_BITRATE, MAX_WORKERS,
    POLL_INTERVAL_SEC, POLL_TIMEOUT_SEC, UPLOAD_TIMEOUT_SEC,
    EXTRACT_TIMEOUT_SEC, CAPTION_LANGUAGES, ASSEMBLYAI_API_BASE,
    ENV_API_KEY, ENV_BASE_URL, ENV_TOOLCHAIN_DIRS, ENV_TEMP_ROOT, ENV_DB_PATH,
)

# Validation bounds
_CHUNK_MINUTES_MIN = 1
_CHUNK_MINUTES_MAX = 120
_MAX_WORKERS_MIN = 1
_MAX_WORKERS_MAX = 32
_POLL_INTERVAL_MIN = 1
_POLL_INTERVAL_MAX = 60
_POLL_TIMEOUT_MIN = 30
_POLL_TIMEOUT_MAX = 7200

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'temp_root': str(DEFAULT_TEMP_ROOT),
    'db_path': str(DB_PATH),
    'toolchain_dirs': list(DEFAULT_TOOLCHAIN_DIRS),
    'base_url': ASSEMBLYAI_API_BASE,
    'cookies_mode': CookiesMode.OFF,
    'cookies_path': str(DEFAULT_COOKIES_PATH),
    'chunk_minutes': CHUNK_MINUTES,
    'chunk_bitrate': CHUNK_BITRATE,
    'max_workers': MAX_WORKERS,
    'poll_interval_sec': POLL_INTERVAL_SEC,
    'poll_timeout_sec': POLL_TIMEOUT_SEC,
    'upload_timeout_sec': UPLOAD_TIMEOUT_SEC,
    'extract_timeout_sec': EXTRACT_TIMEOUT_SEC,
    'job_deadline_sec': 0,
    'chunk_failure_policy': ChunkFailurePolicy.DEGRADE,
    'caption_languages': CAPTION_LANGUAGES,
    'keep_debug_artifacts': False,
}

# Keys that may never be written to the JSON file
_SECRET_KEYS = {'api_key'}


class AppConfig:
    """Manages application configuration stored as JSON, with env overrides."""

    def __init__(self, config_path: Path | None = None,
                 environ: dict | None = None, persist: bool = True):
        self.path = config_path or CONFIG_PATH
        self.environ = os.environ if environ is None else environ
        self.persist = persist
        self._data: dict = {}
        self.load()

    @classmethod
    def from_dict(cls, values: dict, environ: dict | None = None) -> "AppConfig":
        """In-memory config (never touches disk). Used by tests and embedders."""
        cfg = cls(config_path=Path(os.devnull), environ=environ or {}, persist=False)
        for key, value in values.items():
            cfg.set(key, value)
        return cfg

    def load(self):
        """Load config from disk, merging with defaults, then apply env overrides."""
        self._data = dict(_DEFAULTS)
        self._data['toolchain_dirs'] = list(DEFAULT_TOOLCHAIN_DIRS)
        if self.persist and self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    if key in _SECRET_KEYS:
                        continue
                    self._data[key] = self._validate(key, value)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)
        self._apply_env()

    def _apply_env(self):
        env = self.environ
        self._data['api_key'] = (env.get(ENV_API_KEY) or '').strip() or None
        if env.get(ENV_BASE_URL):
            self._data['base_url'] = env[ENV_BASE_URL].rstrip('/')
        if env.get(ENV_TOOLCHAIN_DIRS):
            dirs = [d for d in env[ENV_TOOLCHAIN_DIRS].split(os.pathsep) if d.strip()]
            self._data['toolchain_dirs'] = dirs
        if env.get(ENV_TEMP_ROOT):
            self._data['temp_root'] = env[ENV_TEMP_ROOT]
        if env.get(ENV_DB_PATH):
            self._data['db_path'] = env[ENV_DB_PATH]

    def save(self):
        """Persist config to disk (secrets excluded)."""
        if not self.persist:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {k: v for k, v in self._data.items() if k not in _SECRET_KEYS}
        with open(self.path, 'w') as f:
            json.dump(data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        if key not in _SECRET_KEYS:
            self.save()

    @staticmethod
    def _clamp_int(key: str, value, lo: int, hi: int) -> int:
        try:
            value = int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid %s %r — using default", key, value)
            return _DEFAULTS[key]
        return max(lo, min(hi, value))

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key == 'chunk_minutes':
            return self._clamp_int(key, value, _CHUNK_MINUTES_MIN, _CHUNK_MINUTES_MAX)

        if key == 'max_workers':
            return self._clamp_int(key, value, _MAX_WORKERS_MIN, _MAX_WORKERS_MAX)

        if key == 'poll_interval_sec':
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid poll_interval_sec %r — using default", value)
                return POLL_INTERVAL_SEC
            return max(_POLL_INTERVAL_MIN, min(_POLL_INTERVAL_MAX, value))

        if key == 'poll_timeout_sec':
            return self._clamp_int(key, value, _POLL_TIMEOUT_MIN, _POLL_TIMEOUT_MAX)

        if key in ('upload_timeout_sec', 'extract_timeout_sec'):
            return self._clamp_int(key, value, 30, 7200)

        if key == 'job_deadline_sec':
            return self._clamp_int(key, value, 0, 86400)

        if key == 'chunk_failure_policy':
            if value not in (ChunkFailurePolicy.DEGRADE, ChunkFailurePolicy.FAIL_FAST):
                logger.warning("Invalid chunk_failure_policy %r — using degrade", value)
                return ChunkFailurePolicy.DEGRADE

        if key == 'cookies_mode':
            if value not in (CookiesMode.OFF, CookiesMode.USE_FILE):
                logger.warning("Invalid cookies_mode %r — using OFF", value)
                return CookiesMode.OFF

        if key == 'toolchain_dirs':
            if isinstance(value, str):
                value = value.split(os.pathsep)
            return [str(d) for d in value if str(d).strip()]

        if key == 'keep_debug_artifacts':
            return bool(value)

        return value

    def as_dict(self) -> dict:
        data = dict(self._data)
        if data.get('api_key'):
            data['api_key'] = '***'
        return data

    @property
    def api_key(self) -> str | None:
        return self._data.get('api_key')

    @property
    def has_api_key(self) -> bool:
        return bool(self._data.get('api_key'))

    @property
    def temp_root(self) -> Path:
        return Path(self._data.get('temp_root', str(DEFAULT_TEMP_ROOT)))

    @property
    def db_path(self) -> Path:
        return Path(self._data.get('db_path', str(DB_PATH)))

    @property
    def toolchain_dirs(self) -> list[str]:
        return list(self._data.get('toolchain_dirs', DEFAULT_TOOLCHAIN_DIRS))

    @property
    def cookies_mode(self) -> str:
        return self._data.get('cookies_mode', CookiesMode.OFF)

    @property
    def cookies_path(self) -> Path:
        return Path(self._data.get('cookies_path', str(DEFAULT_COOKIES_PATH)))

    @property
    def keep_debug_artifacts(self) -> bool:
        return self._data.get('keep_debug_artifacts', False)
