"""
Diff engine -- classify each manifest entry against the live tree.

For every tracked path the compiled copy (``compiled_root / rel``) is
compared with the live file (``target_root / rel``):

    missing    nothing at the target path, not even a dangling link
    identical  symlink whose literal value is the compiled path, or a
               file whose SHA-256 matches the manifest
    modified   anything else, including foreign symlinks, directories,
               and files that cannot be hashed

``new`` belongs to the status taxonomy but is never produced here.
"""

from __future__ import annotations

import logging
import os
import stat
import subprocess
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Sequence

from .hashing import FingerprintError, Manifest, fingerprint
from .secrets import is_encrypted, strip_encrypted_suffix

logger = logging.getLogger("dotdipper.diff")


class DiffStatus(str, Enum):
    """Relationship between a compiled file and its live counterpart."""

    IDENTICAL = "identical"
    MODIFIED = "modified"
    MISSING = "missing"
    NEW = "new"

    @property
    def symbol(self) -> str:
        return _SYMBOLS[self]

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_SYMBOLS = {
    DiffStatus.MODIFIED: "M",
    DiffStatus.NEW: "A",
    DiffStatus.MISSING: "D",
    DiffStatus.IDENTICAL: "=",
}

_DESCRIPTIONS = {
    DiffStatus.MODIFIED: "modified",
    DiffStatus.NEW: "new",
    DiffStatus.MISSING: "missing from system",
    DiffStatus.IDENTICAL: "identical",
}


class FileKind(str, Enum):
    """What sits at a path, without following symlinks."""

    REGULAR = "regular"
    DIRECTORY = "directory"
    SYMLINK = "symlink"


def probe(path: Path) -> Optional[FileKind]:
    """Resolve the FileKind of ``path`` with a single lstat.

    Returns:
        The kind, or None when nothing exists at the path. Special
        files (fifos, sockets, devices) are reported as REGULAR.
    """
    try:
        mode = os.lstat(path).st_mode
    except (FileNotFoundError, NotADirectoryError):
        return None
    if stat.S_ISLNK(mode):
        return FileKind.SYMLINK
    if stat.S_ISDIR(mode):
        return FileKind.DIRECTORY
    return FileKind.REGULAR


@dataclass(frozen=True)
class DiffEntry:
    """Classification of one tracked path in a single diff pass."""

    rel_path: str
    source_path: Path
    target_path: Path
    status: DiffStatus
    kind: Optional[FileKind] = None


def target_for(target_root: Path, rel_path: str) -> Path:
    """Live path for a manifest key; encrypted entries lose their suffix."""
    return strip_encrypted_suffix(target_root / rel_path)


def classify(source: Path, target: Path, expected_hash: str) -> tuple[DiffStatus, Optional[FileKind]]:
    """Classify one target against its compiled source and stored hash."""
    kind = probe(target)
    if kind is None:
        return DiffStatus.MISSING, None

    if kind is FileKind.SYMLINK:
        try:
            link = os.readlink(target)
        except OSError:
            return DiffStatus.MODIFIED, kind
        status = DiffStatus.IDENTICAL if link == str(source) else DiffStatus.MODIFIED
        return status, kind

    # .age entries hash the ciphertext, so live plaintext never matches
    try:
        current = fingerprint(target)
    except FingerprintError as exc:
        logger.debug("Treating as modified: %s", exc)
        return DiffStatus.MODIFIED, kind
    status = DiffStatus.IDENTICAL if current.hash == expected_hash else DiffStatus.MODIFIED
    return status, kind


def compute_diff(
    compiled_root: Path,
    manifest: Manifest,
    target_root: Path,
) -> list[DiffEntry]:
    """Classify every manifest entry, in lexicographic path order.

    Args:
        compiled_root: Canonical tree the manifest describes.
        manifest: Manifest to compare against. Read-only.
        target_root: Live tree, normally the home directory.

    Returns:
        One DiffEntry per manifest path.
    """
    compiled = Path(os.path.abspath(compiled_root))
    target_base = Path(target_root)
    entries = []

    for rel in manifest.paths():
        source = compiled / rel
        target = target_for(target_base, rel)
        status, kind = classify(source, target, manifest.files[rel].hash)
        entries.append(DiffEntry(
            rel_path=rel,
            source_path=source,
            target_path=target,
            status=status,
            kind=kind,
        ))

    logger.debug("Diffed %d entries", len(entries))
    return entries


def count_by_status(entries: Iterable[DiffEntry]) -> dict[DiffStatus, int]:
    """Count entries per status; every status is present, zero or not."""
    counts = Counter(e.status for e in entries)
    return {status: counts.get(status, 0) for status in DiffStatus}


def select_entries(
    entries: Iterable[DiffEntry],
    exclude_statuses: Sequence[DiffStatus] = (DiffStatus.IDENTICAL,),
) -> list[DiffEntry]:
    """Keep entries whose status is not in ``exclude_statuses``."""
    return [e for e in entries if e.status not in exclude_statuses]


def _normalize_filter(raw: str, target_root: Path) -> Optional[str]:
    text = raw.strip()
    if not text:
        return None
    if text == "~":
        return ""
    if text.startswith("~/"):
        return os.path.normpath(text[2:]).replace(os.sep, "/")

    path = Path(text)
    if path.is_absolute():
        try:
            path = path.relative_to(target_root)
        except ValueError:
            pass
    return os.path.normpath(str(path)).replace(os.sep, "/")


def _matches(rel_path: str, prefix: str) -> bool:
    if prefix in ("", "."):
        return True
    return rel_path == prefix or rel_path.startswith(prefix.rstrip("/") + "/")


def _filter_keys(rel_path: str) -> tuple[str, ...]:
    plain = strip_encrypted_suffix(Path(rel_path)).as_posix()
    return (rel_path,) if plain == rel_path else (rel_path, plain)


def filter_by_paths(
    entries: Iterable[DiffEntry],
    filters: Sequence[str],
    target_root: Path,
) -> list[DiffEntry]:
    """Narrow entries to those at or under any of ``filters``.

    Filters may be relative (``.config/nvim``), home-relative
    (``~/.config/nvim``), or absolute under ``target_root``. Matching
    is by whole path components, so ``.config/nv`` does not match
    ``.config/nvim``. Encrypted entries also match by their decrypted
    name.
    """
    items = list(entries)
    if not filters:
        return items

    prefixes = [
        p for p in (_normalize_filter(f, Path(target_root)) for f in filters)
        if p is not None
    ]
    return [
        e for e in items
        if any(_matches(key, p) for key in _filter_keys(e.rel_path) for p in prefixes)
    ]


BINARY_SNIFF_BYTES = 8192
GIT_DIFF_HEADER_LINES = 4


@dataclass
class ContentDiff:
    """Line-level view of how a live file differs from its compiled copy.

    Attributes:
        lines: Unified diff body (headers stripped), empty when not
            available.
        binary: Either side looks binary; only sizes are reported.
        encrypted: The compiled copy is ciphertext; nothing is compared.
        missing: The live file does not exist.
        source_size: Compiled copy size in bytes.
        target_size: Live file size in bytes, if it exists.
    """

    lines: list[str] = field(default_factory=list)
    binary: bool = False
    encrypted: bool = False
    missing: bool = False
    source_size: Optional[int] = None
    target_size: Optional[int] = None


def is_binary(path: Path) -> bool:
    """A NUL byte in the first 8 KiB marks a file as binary."""
    if not path.is_file():
        return False
    with open(path, "rb") as f:
        return b"\0" in f.read(BINARY_SNIFF_BYTES)


def _git_diff(target: Path, source: Path) -> list[str]:
    try:
        result = subprocess.run(
            ["git", "diff", "--no-index", "--no-color", "--", str(target), str(source)],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        logger.debug("git diff unavailable: %s", exc)
        return []

    # 1 means the files differ
    if result.returncode not in (0, 1):
        logger.debug("git diff exited with %d: %s", result.returncode, result.stderr.strip())
        return []
    return result.stdout.splitlines()[GIT_DIFF_HEADER_LINES:]


def content_diff(entry: DiffEntry) -> ContentDiff:
    """Describe how ``entry.target_path`` differs from its compiled copy.

    Text files are compared with ``git diff --no-index``. When git is
    missing or fails, ``lines`` is empty and callers fall back to a
    plain "differs" note.
    """
    source, target = entry.source_path, entry.target_path
    if is_encrypted(source):
        return ContentDiff(encrypted=True)
    if not os.path.lexists(target):
        return ContentDiff(missing=True)

    try:
        if is_binary(source) or is_binary(target):
            return ContentDiff(
                binary=True,
                source_size=source.stat().st_size,
                target_size=target.stat().st_size if target.exists() else None,
            )
    except OSError as exc:
        logger.debug("Cannot read %s for diff: %s", target, exc)
        return ContentDiff()

    return ContentDiff(lines=_git_diff(target, source))
