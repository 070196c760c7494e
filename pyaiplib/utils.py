"""Utility functions for PyAIPLib."""

from datetime import datetime
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

# Page size used when paging through the remote document list
DEFAULT_PAGE_SIZE: int = 100

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Minutes between scheduled smart syncs
DEFAULT_SYNC_INTERVAL: int = 30

# Plugin-private directory inside the vault and the mapping file it holds
PRIVATE_DIR_NAME: str = ".pyaiplib"
MAPPING_FILE_NAME: str = "mapping.json"

# Name recorded in parentFolders for the vault root
ROOT_FOLDER_SENTINEL: str = "/"


# =============================================================================
# Timestamp parsing utilities
# =============================================================================


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp as returned by the library API.

    The API reports ``gmtCreate``/``gmtModified`` either as ISO strings
    (optionally with a ``Z`` suffix) or as ``YYYY-MM-DD HH:MM:SS``.

    Args:
        timestamp_str: Timestamp string

    Returns:
        Naive datetime in local time, or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
        if dt.tzinfo is not None:
            return datetime.fromtimestamp(dt.timestamp())
        return dt
    except (ValueError, AttributeError):
        return None


def format_timestamp_ms(value: Optional[int]) -> str:
    """Format a millisecond epoch timestamp for display.

    Args:
        value: Milliseconds since the epoch

    Returns:
        ``YYYY-MM-DD HH:MM:SS`` or ``-`` when unknown
    """
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Path utilities
# =============================================================================


def normalize_vault_path(path: str) -> str:
    """Normalize a user-supplied vault-relative path.

    Converts backslashes to forward slashes and strips leading ``./`` and
    slashes as well as trailing slashes.

    Examples:
        >>> normalize_vault_path("./notes/a.md")
        'notes/a.md'
        >>> normalize_vault_path("/")
        ''
    """
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    path = path.strip("/")
    return "" if path == "." else path


def is_path_under_folder(file_path: str, folder_path: str) -> bool:
    """Check whether a vault path lies inside a folder.

    An empty folder path denotes the vault root and contains everything.

    Examples:
        >>> is_path_under_folder("notes/a.md", "notes")
        True
        >>> is_path_under_folder("notes-old/a.md", "notes")
        False
    """
    folder_path = folder_path.rstrip("/")
    if not folder_path:
        return True
    return file_path.startswith(folder_path + "/")
