"""Exception types for PyAIPLib."""


class AIPLibError(Exception):
    """Base exception for all PyAIPLib errors."""


# =============================================================================
# Remote library service errors
# =============================================================================


class AIPLibAPIError(AIPLibError):
    """A call to the remote library service failed.

    Raised for transport failures as well as for responses whose envelope
    reports ``success: false`` or a nonzero ``errorCode``.
    """


class AIPLibAuthenticationError(AIPLibAPIError):
    """The API key was rejected."""


class AIPLibPermissionError(AIPLibAPIError):
    """Access to the resource is forbidden."""


class AIPLibNotFoundError(AIPLibAPIError):
    """The requested library or document does not exist."""


class AIPLibRateLimitError(AIPLibAPIError):
    """Too many requests."""


class AIPLibNetworkError(AIPLibAPIError):
    """Network-level failure (connection refused, timeout, ...)."""


class AIPLibInvalidResponseError(AIPLibAPIError):
    """The server returned something that is not a JSON envelope."""


class AIPLibConfigError(AIPLibError):
    """Required configuration (API key, library id) is missing or invalid."""


# =============================================================================
# Sync errors
# =============================================================================


class SyncError(AIPLibError):
    """Base exception for sync engine errors."""


class CorruptStateError(SyncError):
    """The mapping file exists but cannot be parsed."""


class StateIOError(SyncError):
    """The mapping file could not be read from disk."""


class NotFoundError(SyncError):
    """No file exists at the given vault path."""


class NotSyncableError(SyncError):
    """The path denotes a folder or a file type that is not synced."""


class SyncInProgressError(SyncError):
    """Another sync operation is already running on this engine."""
