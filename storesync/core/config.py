"""
Configuration loader for StoreSync.
Uses YAML format, with environment overrides for secrets and deployment values.
"""

import yaml
import os
from pathlib import Path
from typing import Any, Optional
import logging

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"

# (section, key) -> environment variable that overrides it
ENV_OVERRIDES = {
    ('general', 'database_path'): 'DATABASE_PATH',
    ('general', 'log_level'): 'LOG_LEVEL',
    ('queue', 'url'): 'RABBITMQ_URL',
    ('api', 'cron_secret'): 'CRON_SECRET',
    ('api', 'sync_token'): 'SYNC_API_TOKEN',
    ('api', 'webhook_secret'): 'SHOPIFY_API_SECRET',
}


class Config:
    """Singleton configuration manager."""

    _instance: Optional['Config'] = None
    _data: dict = {}
    _project_root: Path = None

    def __new__(cls, config_path: Optional[str] = None) -> 'Config':
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._project_root = Path(__file__).resolve().parent.parent.parent
            instance._load(config_path)
            cls._instance = instance
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the cached instance so the next access reloads from disk."""
        cls._instance = None

    def _load(self, config_path: Optional[str] = None) -> None:
        """Load configuration from YAML file."""
        config_path = config_path or os.getenv('STORESYNC_CONFIG')
        if config_path:
            path = Path(config_path)
        else:
            path = self._project_root / "config.yaml"

        if not path.exists():
            logger.warning(f"Configuration file not found: {path}, using defaults")
            self._data = {}
        else:
            with open(path, 'r', encoding='utf-8') as f:
                self._data = yaml.safe_load(f) or {}

            if not isinstance(self._data, dict):
                raise ValueError(f"Configuration root must be a mapping: {path}")

            logger.info(f"Configuration loaded from {path}")

        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        for (section, key), env_name in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                self._data.setdefault(section, {})[key] = value

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get a nested config value.
        Example: config.get('shopify', 'timeout') -> config['shopify']['timeout']
        """
        value = self._data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_int(self, *keys: str, default: int = 0) -> int:
        """Get integer value."""
        value = self.get(*keys, default=default)
        return int(value) if value is not None else default

    def get_float(self, *keys: str, default: float = 0.0) -> float:
        """Get float value."""
        value = self.get(*keys, default=default)
        return float(value) if value is not None else default

    def get_bool(self, *keys: str, default: bool = False) -> bool:
        """Get boolean value."""
        value = self.get(*keys, default=default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ('true', 'yes', '1', 'on')
        return bool(value)

    @property
    def project_root(self) -> Path:
        """Get project root directory."""
        return self._project_root

    @property
    def data_dir(self) -> Path:
        """Get data directory path, creating if needed."""
        dir_name = self.get('general', 'data_dir', default='data')
        path = self._project_root / dir_name
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def db_path(self) -> Path:
        """Get database file path."""
        explicit = self.get('general', 'database_path')
        if explicit:
            return Path(explicit)
        db_name = self.get('general', 'database', default='storesync.db')
        return self.data_dir / db_name

    @property
    def log_path(self) -> Optional[Path]:
        """Get log file path, None when logging to console only."""
        log_name = self.get('general', 'log_file')
        if not log_name:
            return None
        return self._project_root / log_name


def get_config() -> Config:
    """Get the global config instance."""
    return Config()
