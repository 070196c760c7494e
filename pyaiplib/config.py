"""Configuration management for PyAIPLib."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values, set_key, unset_key

from .exceptions import AIPLibConfigError
from .utils import DEFAULT_SYNC_INTERVAL

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://aiproxy.io/api"
DEFAULT_ASK_URL = "https://api.aiproxy.io/api/library/ask"
DEFAULT_MODEL = "gpt-3.5-turbo"

# Keys stored in the config file, mapped to their environment variable
_SETTING_KEYS = {
    "api_key": "AIPLIB_API_KEY",
    "library_id": "AIPLIB_LIBRARY_ID",
    "api_url": "AIPLIB_API_URL",
    "ask_url": "AIPLIB_ASK_URL",
    "model": "AIPLIB_MODEL",
    "ignore_folders": "AIPLIB_IGNORE_FOLDERS",
    "sync_interval": "AIPLIB_SYNC_INTERVAL",
}


def parse_ignore_folders(value: Optional[str]) -> frozenset[str]:
    """Parse the comma-separated ignore-folders setting.

    Examples:
        >>> sorted(parse_ignore_folders("archive, drafts,,"))
        ['archive', 'drafts']
        >>> parse_ignore_folders("")
        frozenset()
    """
    if not value:
        return frozenset()
    return frozenset(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class LibrarySettings:
    """Settings a sync engine is constructed with.

    This is the only place the engine gets its API key, library id and
    ignore list from.
    """

    api_key: str
    library_id: int
    ignore_folders: frozenset[str] = frozenset()
    api_url: str = DEFAULT_API_URL
    max_workers: int = 1

    def __post_init__(self) -> None:
        if not self.api_key:
            raise AIPLibConfigError(
                "API key not configured. Run 'pyaiplib init' or set AIPLIB_API_KEY."
            )
        if self.library_id <= 0:
            raise AIPLibConfigError(
                "Library id not configured. Run 'pyaiplib init' or set "
                "AIPLIB_LIBRARY_ID."
            )
        if self.max_workers < 1:
            raise AIPLibConfigError("max_workers must be at least 1")


class Config:
    """Settings read from the environment and the user config file.

    Environment variables take precedence over the config file
    (``~/.config/pyaiplib/config``, dotenv format).
    """

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir or Path.home() / ".config" / "pyaiplib"
        self.config_file = self.config_dir / "config"

    def _file_values(self) -> dict[str, Optional[str]]:
        if not self.config_file.exists():
            return {}
        try:
            return dict(dotenv_values(self.config_file))
        except OSError as e:
            logger.warning(f"Failed to read config file {self.config_file}: {e}")
            return {}

    def get(self, key: str) -> Optional[str]:
        """Get a raw setting value.

        Args:
            key: Setting name (one of api_key, library_id, api_url, ask_url,
                model, ignore_folders, sync_interval)

        Returns:
            The value, or None if unset
        """
        env_name = _SETTING_KEYS[key]
        value = os.environ.get(env_name)
        if value:
            return value
        return self._file_values().get(env_name) or None

    @property
    def api_key(self) -> Optional[str]:
        return self.get("api_key")

    @property
    def library_id(self) -> Optional[int]:
        value = self.get("library_id")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring non-numeric library id: {value!r}")
            return None

    @property
    def api_url(self) -> str:
        return (self.get("api_url") or DEFAULT_API_URL).rstrip("/")

    @property
    def ask_url(self) -> str:
        return self.get("ask_url") or DEFAULT_ASK_URL

    @property
    def model(self) -> str:
        return self.get("model") or DEFAULT_MODEL

    @property
    def ignore_folders(self) -> frozenset[str]:
        return parse_ignore_folders(self.get("ignore_folders"))

    @property
    def sync_interval(self) -> int:
        """Minutes between scheduled syncs."""
        value = self.get("sync_interval")
        if not value:
            return DEFAULT_SYNC_INTERVAL
        try:
            return max(1, int(value))
        except ValueError:
            return DEFAULT_SYNC_INTERVAL

    def is_configured(self) -> bool:
        """Check whether both the API key and the library id are set."""
        return bool(self.api_key) and bool(self.library_id)

    def get_config_path(self) -> Path:
        return self.config_file

    def save_settings(self, **settings: Optional[str]) -> None:
        """Store settings in the config file.

        Existing keys not passed are kept. Passing None removes a key.
        Values are written quoted, so commas, ``#`` and quotes survive.

        Args:
            **settings: Setting names and values (see ``get``)
        """
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.touch(mode=0o600, exist_ok=True)
        existing = self._file_values()
        file_name = str(self.config_file)
        for key, value in settings.items():
            env_name = _SETTING_KEYS[key]
            if value is None:
                if env_name in existing:
                    unset_key(file_name, env_name)
            else:
                set_key(file_name, env_name, str(value))
        self.config_file.chmod(0o600)
        logger.debug(f"Saved {len(settings)} setting(s) to {self.config_file}")

    def library_settings(
        self,
        api_key: Optional[str] = None,
        library_id: Optional[int] = None,
        ignore_folders: Optional[str] = None,
        max_workers: int = 1,
    ) -> LibrarySettings:
        """Build the settings value for a sync engine.

        Explicit arguments override configured values.

        Raises:
            AIPLibConfigError: If API key or library id is missing
        """
        folders = (
            parse_ignore_folders(ignore_folders)
            if ignore_folders is not None
            else self.ignore_folders
        )
        return LibrarySettings(
            api_key=api_key or self.api_key or "",
            library_id=library_id or self.library_id or 0,
            ignore_folders=folders,
            api_url=self.api_url,
            max_workers=max_workers,
        )


config = Config()
