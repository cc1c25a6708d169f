"""Exception hierarchy for WatchSync."""


class WatchSyncError(Exception):
    """Base exception for all WatchSync errors."""


# =============================================================================
# Configuration errors (returned synchronously to the registry caller)
# =============================================================================


class WatchConfigError(WatchSyncError):
    """Base class for watch configuration errors."""

    def __init__(self, local: str, message: str = ""):
        self.local = local
        super().__init__(message or local)


class WatchAlreadyExistsError(WatchConfigError):
    """A watch for this local directory is already registered."""

    def __init__(self, local: str):
        super().__init__(local, f"Watch already exists for {local}")


class WatchNotFoundError(WatchConfigError):
    """No watch is registered for this local directory."""

    def __init__(self, local: str):
        super().__init__(local, f"Watch not found: {local}")


class WatchAlreadyRunningError(WatchConfigError):
    """The watch is already running."""

    def __init__(self, local: str):
        super().__init__(local, f"Watch already running: {local}")


class WatchNotRunningError(WatchConfigError):
    """The watch is not running."""

    def __init__(self, local: str):
        super().__init__(local, f"Watch not running: {local}")


# =============================================================================
# Persistence errors
# =============================================================================


class StateError(WatchSyncError):
    """Base class for registry persistence errors."""


class StateLoadError(StateError):
    """The state file exists but could not be read or parsed."""


class StateSaveError(StateError):
    """The registry could not be serialized or written to disk."""


# =============================================================================
# Transient per-file errors (the file is retried on the next pass)
# =============================================================================


class SyncFileError(WatchSyncError):
    """Base class for errors that only affect a single artifact."""


class FingerprintError(SyncFileError):
    """The fingerprint of a file could not be computed."""


class EncryptionError(SyncFileError):
    """Encryption failed or the method is unknown."""


class TransformError(SyncFileError):
    """A local transform step (rename, archive) failed."""


class UploadError(SyncFileError):
    """Uploading an artifact failed."""


class NetworkError(UploadError):
    """Network-level failure while talking to the upload endpoint."""


class AuthenticationError(UploadError):
    """The upload endpoint rejected our credentials."""


class RateLimitError(UploadError):
    """The upload endpoint asked us to slow down."""
