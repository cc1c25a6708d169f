"""Gitignore-style ignore rules for watched directories.

Rules are read from a plain-text file, one rule per line:

- blank lines and lines starting with ``#`` are skipped
- ``!pattern`` negates a rule (un-ignores an earlier match)
- ``/pattern`` anchors the rule to the watch root
- ``pattern/`` only matches directories
- ``**`` matches any sequence of characters including ``/``
- ``*`` matches any sequence of characters within one path segment
- ``?`` matches exactly one character

Rules are evaluated in file order and the last matching rule wins. A
directory-only rule also matches a file through any of its ancestor
directories, so ``build/`` covers ``build/x.o``.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".syncignore"


def pattern_to_regex(pattern: str, anchored: bool) -> str:
    """Translate a glob body into a regular expression string.

    Args:
        pattern: Glob body without negation, anchor or directory markers
        anchored: Whether the rule must match from the watch root

    Returns:
        Regular expression matching the whole relative path

    Examples:
        >>> pattern_to_regex("*.log", anchored=False)
        '^(.*/)?[^/]*\\\\.log$'
        >>> pattern_to_regex("build/**", anchored=True)
        '^build/.*$'
    """
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
            continue
        ch = pattern[i]
        if ch == "*":
            parts.append("[^/]*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
        i += 1

    body = "".join(parts)
    if anchored:
        return f"^{body}$"
    # Unanchored rules may match any segment-aligned suffix
    return f"^(.*/)?{body}$"


@dataclass(frozen=True)
class IgnoreRule:
    """A single compiled ignore rule."""

    pattern: str
    """Glob body with markers stripped"""

    regex: "re.Pattern[str]"
    """Compiled matcher for the full relative path"""

    negated: bool = False
    """Rule started with ``!``"""

    anchored: bool = False
    """Rule started with ``/``"""

    dir_only: bool = False
    """Rule ended with ``/``"""

    @classmethod
    def parse(cls, line: str) -> Optional["IgnoreRule"]:
        """Parse one line of an ignore file.

        Args:
            line: Raw line

        Returns:
            Compiled rule, or None for blank lines, comments and invalid rules
        """
        text = line.strip()
        if not text or text.startswith("#"):
            return None

        negated = False
        if text.startswith("!"):
            negated = True
            text = text[1:].strip()
            if not text:
                return None

        anchored = False
        if text.startswith("/"):
            anchored = True
            text = text.lstrip("/")

        dir_only = False
        if text.endswith("/"):
            dir_only = True
            text = text.rstrip("/")

        if not text:
            return None

        try:
            regex = re.compile(pattern_to_regex(text, anchored))
        except re.error as e:
            logger.warning(f"Skipping invalid ignore rule {line.strip()!r}: {e}")
            return None

        return cls(
            pattern=text,
            regex=regex,
            negated=negated,
            anchored=anchored,
            dir_only=dir_only,
        )

    def matches(self, relative_path: str, is_dir: bool = False) -> bool:
        """Check whether this rule matches a relative path."""
        if self.dir_only and not is_dir:
            return False
        return self.regex.match(relative_path) is not None


class IgnoreRuleSet:
    """An ordered list of ignore rules evaluated with last-match-wins.

    Examples:
        >>> rules = IgnoreRuleSet.from_lines(["*.log", "!important.log"])
        >>> rules.is_ignored("debug.log")
        True
        >>> rules.is_ignored("important.log")
        False
    """

    def __init__(self, rules: Optional[list[IgnoreRule]] = None):
        self.rules: list[IgnoreRule] = list(rules or [])

    def __len__(self) -> int:
        return len(self.rules)

    def __bool__(self) -> bool:
        return bool(self.rules)

    @classmethod
    def from_lines(cls, lines: list[str]) -> "IgnoreRuleSet":
        rules = []
        for line in lines:
            rule = IgnoreRule.parse(line)
            if rule is not None:
                rules.append(rule)
        return cls(rules)

    @classmethod
    def from_text(cls, text: str) -> "IgnoreRuleSet":
        return cls.from_lines(text.splitlines())

    def is_ignored(self, relative_path: str, is_dir: bool = False) -> bool:
        """Check whether a path relative to the watch root is ignored.

        Every rule is tried in file order against the path itself and, for
        directory-only rules, against each ancestor directory of the path.
        The last rule that matches either way decides, so a later negation
        can re-include a file below an ignored directory.

        Args:
            relative_path: Path relative to the watch root
            is_dir: Whether the path itself is a directory

        Returns:
            True if the path should not be synchronized
        """
        if not self.rules:
            return False

        relative_path = relative_path.replace("\\", "/").strip("/")
        segments = relative_path.split("/")
        ancestors = ["/".join(segments[:depth]) for depth in range(1, len(segments))]

        ignored = False
        for rule in self.rules:
            if rule.matches(relative_path, is_dir=is_dir) or (
                rule.dir_only
                and any(rule.matches(parent, is_dir=True) for parent in ancestors)
            ):
                ignored = not rule.negated
        return ignored


def resolve_ignore_path(
    root: Path, ignore_source: Optional[str] = None
) -> Optional[Path]:
    """Work out which ignore file applies to a watch.

    Args:
        root: Watch root directory
        ignore_source: Explicit ignore file, absolute or relative to ``root``

    Returns:
        Path of the ignore file, or None if no explicit source is configured
        and no default file exists inside the root
    """
    if ignore_source:
        path = Path(ignore_source).expanduser()
        if not path.is_absolute():
            path = root / path
        return path

    default_path = root / IGNORE_FILE_NAME
    if default_path.is_file():
        return default_path
    return None


def load_ignore_file(path: Union[str, Path, None]) -> IgnoreRuleSet:
    """Load and compile an ignore file.

    A missing or unreadable file yields an empty rule set.
    """
    if path is None:
        return IgnoreRuleSet()

    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug(f"Ignore file not found: {path}")
        return IgnoreRuleSet()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read ignore file {path}: {e}")
        return IgnoreRuleSet()

    rules = IgnoreRuleSet.from_text(text)
    logger.debug(f"Loaded {len(rules)} ignore rule(s) from {path}")
    return rules


def load_rules_for_watch(
    root: Path, ignore_source: Optional[str] = None
) -> IgnoreRuleSet:
    """Load the ignore rules that apply to a watch root."""
    return load_ignore_file(resolve_ignore_path(root, ignore_source))
