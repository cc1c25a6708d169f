"""Sync engine for WatchSync - watches, change detection and transforms."""

from .bundle import bundle_file_name, create_bundle
from .comparator import ChangeDetector, SyncAction, SyncDecision
from .engine import SyncEngine
from .fingerprint import FileFingerprint, FingerprintMode
from .ignore import (
    IGNORE_FILE_NAME,
    IgnoreRule,
    IgnoreRuleSet,
    load_ignore_file,
)
from .modes import SyncMode
from .operations import SyncOperations
from .registry import WatchRegistry, run_until_interrupted
from .scanner import walk_tree
from .scheduler import WatchHandle, WatchScheduler, WatchTask
from .state import FileState, Registry, StateStore, WatchEntry, watch_id_for
from .transform import TransformPipeline

__all__ = [
    "SyncEngine",
    "SyncMode",
    "SyncOperations",
    "WatchRegistry",
    "run_until_interrupted",
    "WatchScheduler",
    "WatchHandle",
    "WatchTask",
    "ChangeDetector",
    "SyncAction",
    "SyncDecision",
    "FileFingerprint",
    "FingerprintMode",
    "FileState",
    "Registry",
    "StateStore",
    "WatchEntry",
    "watch_id_for",
    "IGNORE_FILE_NAME",
    "IgnoreRule",
    "IgnoreRuleSet",
    "load_ignore_file",
    "TransformPipeline",
    "bundle_file_name",
    "create_bundle",
    "walk_tree",
]
