"""WatchSync - periodically sync local directories to remote storage."""

from .api import UploadClient
from .exceptions import (
    AuthenticationError,
    EncryptionError,
    FingerprintError,
    NetworkError,
    RateLimitError,
    StateError,
    StateLoadError,
    StateSaveError,
    SyncFileError,
    TransformError,
    UploadError,
    WatchAlreadyExistsError,
    WatchAlreadyRunningError,
    WatchConfigError,
    WatchNotFoundError,
    WatchNotRunningError,
    WatchSyncError,
)
from .sync.registry import WatchRegistry, run_until_interrupted

__all__ = [
    "UploadClient",
    "WatchRegistry",
    "run_until_interrupted",
    "WatchSyncError",
    "WatchConfigError",
    "WatchAlreadyExistsError",
    "WatchNotFoundError",
    "WatchAlreadyRunningError",
    "WatchNotRunningError",
    "StateError",
    "StateLoadError",
    "StateSaveError",
    "SyncFileError",
    "FingerprintError",
    "EncryptionError",
    "TransformError",
    "UploadError",
    "NetworkError",
    "AuthenticationError",
    "RateLimitError",
]
