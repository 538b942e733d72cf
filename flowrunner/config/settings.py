"""
Application settings and configuration management.

Centralizes all configuration with environment variable support.
A .env file in the working directory is loaded if present.
"""

import os
from typing import Optional
from functools import lru_cache

from dotenv import load_dotenv


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


class Settings:
    """
    Flow runner settings loaded from environment variables.

    All settings have sensible defaults and can be overridden via environment.
    """

    def __init__(self):
        # HTTP execution settings
        self.http_timeout: float = float(os.getenv('FLOW_HTTP_TIMEOUT', '30'))
        self.http_verify_ssl: bool = _env_bool('FLOW_HTTP_VERIFY_SSL', 'true')

        # Node behaviour settings (0 = no cap)
        self.max_delay_ms: int = int(os.getenv('FLOW_MAX_DELAY_MS', '0'))
        self.script_max_log_entries: int = int(os.getenv('FLOW_SCRIPT_MAX_LOG_ENTRIES', '1000'))
        self.script_timeout_ms: int = int(os.getenv('FLOW_SCRIPT_TIMEOUT_MS', '30000'))

        # Logging settings
        self.log_level: str = os.getenv('LOG_LEVEL', 'INFO')
        self.log_dir: Optional[str] = os.getenv('LOG_DIR') or None
        self.log_json: bool = _env_bool('LOG_JSON', 'false')

    def clamp_delay(self, ms: int) -> int:
        """Apply the configured delay cap, if any."""
        if self.max_delay_ms and ms > self.max_delay_ms:
            return self.max_delay_ms
        return ms

    def to_dict(self) -> dict:
        """
        Convert settings to dictionary.

        Returns:
            Dictionary of settings
        """
        return {
            'http_timeout': self.http_timeout,
            'http_verify_ssl': self.http_verify_ssl,
            'max_delay_ms': self.max_delay_ms,
            'script_max_log_entries': self.script_max_log_entries,
            'script_timeout_ms': self.script_timeout_ms,
            'log_level': self.log_level,
            'log_dir': self.log_dir,
            'log_json': self.log_json,
        }


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance (cached)
    """
    load_dotenv()
    return Settings()
