"""PyAIPLib - keep a folder of Markdown notes in sync with an AI knowledge library."""

from .api import AIPLibraryClient
from .exceptions import (
    AIPLibAPIError,
    AIPLibAuthenticationError,
    AIPLibConfigError,
    AIPLibError,
    AIPLibInvalidResponseError,
    AIPLibNetworkError,
    AIPLibNotFoundError,
    AIPLibPermissionError,
    AIPLibRateLimitError,
    CorruptStateError,
    NotFoundError,
    NotSyncableError,
    StateIOError,
    SyncError,
    SyncInProgressError,
)
from .models import FileMapping, FileStat, RemoteDocInfo

__all__ = [
    "AIPLibraryClient",
    "AIPLibError",
    "AIPLibAPIError",
    "AIPLibAuthenticationError",
    "AIPLibConfigError",
    "AIPLibInvalidResponseError",
    "AIPLibNetworkError",
    "AIPLibNotFoundError",
    "AIPLibPermissionError",
    "AIPLibRateLimitError",
    "SyncError",
    "CorruptStateError",
    "StateIOError",
    "NotFoundError",
    "NotSyncableError",
    "SyncInProgressError",
    "FileMapping",
    "FileStat",
    "RemoteDocInfo",
]
