"""Change detection for incremental sync passes."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .fingerprint import FileFingerprint, FingerprintMode
from .ignore import IgnoreRuleSet
from .state import FileState


class SyncAction(str, Enum):
    """Actions that can be taken for a file during a pass."""

    UPLOAD = "upload"
    """Upload the file (new or changed)"""

    SKIP = "skip"
    """File is unchanged since its last upload"""

    IGNORE = "ignore"
    """File matches an ignore rule"""


@dataclass
class SyncDecision:
    """Represents a decision about how to sync a file."""

    action: SyncAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    path: Path
    """Absolute local path"""

    relative_path: str
    """Forward-slash path relative to the watch root"""

    fingerprint: FileFingerprint
    """Fingerprint computed during this pass"""


class ChangeDetector:
    """Decides per file whether it has to be uploaded.

    Order of evaluation for one file: fingerprint, comparison with the last
    recorded state, then the ignore rules. Ignored files never get a state
    entry, so they are re-evaluated on every pass.
    """

    def __init__(
        self,
        rules: Optional[IgnoreRuleSet] = None,
        mode: FingerprintMode = FingerprintMode.CONTENT,
    ):
        """Initialize change detector.

        Args:
            rules: Compiled ignore rules of the watch
            mode: Fingerprint comparison mode
        """
        self.rules = rules or IgnoreRuleSet()
        self.mode = mode

    def evaluate(
        self,
        path: Path,
        relative_path: str,
        previous: Optional[FileState] = None,
    ) -> SyncDecision:
        """Evaluate one file of the watch.

        Args:
            path: Absolute path of the file
            relative_path: Forward-slash path relative to the watch root
            previous: Last recorded state for the file, if any

        Returns:
            SyncDecision for this file

        Raises:
            FingerprintError: If the file could not be hashed
        """
        fingerprint = FileFingerprint.from_path(path, self.mode)

        if fingerprint.matches(previous, self.mode):
            return SyncDecision(
                action=SyncAction.SKIP,
                reason="Unchanged since last upload",
                path=path,
                relative_path=relative_path,
                fingerprint=fingerprint,
            )

        if self.rules.is_ignored(relative_path):
            return SyncDecision(
                action=SyncAction.IGNORE,
                reason="Matches ignore rule",
                path=path,
                relative_path=relative_path,
                fingerprint=fingerprint,
            )

        if previous is None:
            reason = "New local file"
        elif self.mode == FingerprintMode.CONTENT:
            reason = f"Content changed (md5 {previous.md5} -> {fingerprint.md5})"
        else:
            reason = (
                f"Metadata changed (size {previous.size} -> {fingerprint.size}, "
                f"mtime {previous.mtime} -> {fingerprint.mtime})"
            )

        return SyncDecision(
            action=SyncAction.UPLOAD,
            reason=reason,
            path=path,
            relative_path=relative_path,
            fingerprint=fingerprint,
        )
