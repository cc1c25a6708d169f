"""Configuration for WatchSync, resolved from environment variables."""

import os
from pathlib import Path
from typing import Optional

DEFAULT_API_URL = "http://127.0.0.1:8080/api/v1"
DEFAULT_METHOD = "aes-128-ctr"
STATE_FILE_NAME = "sync_config.json"


class Config:
    """Runtime configuration.

    Values are read from the environment on every access so tests and
    long-running processes see updates without re-importing the module.
    """

    @property
    def config_dir(self) -> Path:
        """Directory holding the registry file."""
        env_dir = os.environ.get("WATCHSYNC_CONFIG_DIR")
        if env_dir:
            return Path(env_dir).expanduser()
        return Path.home() / ".config" / "watchsync"

    @property
    def state_file(self) -> Path:
        """Path of the persisted watch registry."""
        env_file = os.environ.get("WATCHSYNC_STATE_FILE")
        if env_file:
            return Path(env_file).expanduser()
        return self.config_dir / STATE_FILE_NAME

    @property
    def api_url(self) -> str:
        return os.environ.get("WATCHSYNC_API_URL", DEFAULT_API_URL).rstrip("/")

    @property
    def api_key(self) -> Optional[str]:
        return os.environ.get("WATCHSYNC_API_KEY") or None

    @property
    def default_method(self) -> str:
        return os.environ.get("WATCHSYNC_DEFAULT_METHOD", DEFAULT_METHOD)


config = Config()
