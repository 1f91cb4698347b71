"""
Fingerprint store -- content hashes and the manifest.

A Fingerprint is the identity of one file's bytes at capture time.
A Manifest is a versioned set of fingerprints keyed by path relative
to a root, persisted as sorted, indented JSON (manifest.lock).

Guarantees:
    - ``hash`` depends only on file bytes (SHA-256, streamed in chunks)
    - ``load_manifest(save_manifest(m)) == m`` field for field
    - manifests are never edited in place; filtering builds a new one
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import stat
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger("dotdipper.hashing")

MANIFEST_VERSION = "1.0.0"
CHUNK_SIZE = 8192

PathLike = Union[str, os.PathLike]


class FingerprintError(OSError):
    """Raised when a file cannot be opened, read, or stat'ed for hashing."""

    def __init__(self, path: PathLike, reason: str):
        super().__init__(f"Failed to fingerprint {path}: {reason}")
        self.path = Path(path)


class ManifestParseError(ValueError):
    """Raised when a manifest file is unreadable or malformed."""


class BatchPolicy(str, Enum):
    """What build_manifest does with a path that cannot be fingerprinted."""

    BEST_EFFORT = "best-effort"
    STRICT = "strict"


class Fingerprint(BaseModel):
    """Content hash and metadata of one file."""

    path: str
    hash: str
    size: int
    mode: int = 0
    modified: datetime


class Manifest(BaseModel):
    """Versioned set of fingerprints keyed by relative path."""

    version: str = MANIFEST_VERSION
    created: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    files: dict[str, Fingerprint] = Field(default_factory=dict)

    def add(self, fp: Fingerprint) -> None:
        self.files[fp.path] = fp

    def get(self, path: str) -> Optional[Fingerprint]:
        return self.files.get(path)

    def paths(self) -> list[str]:
        """Relative paths in deterministic (lexicographic) order."""
        return sorted(self.files)

    def subset(self, paths: Iterable[str]) -> "Manifest":
        """Build a new manifest restricted to ``paths``."""
        wanted = set(paths)
        return Manifest(
            version=self.version,
            created=self.created,
            files={p: fp for p, fp in self.files.items() if p in wanted},
        )

    def __contains__(self, path: object) -> bool:
        return path in self.files

    def __len__(self) -> int:
        return len(self.files)


@dataclass
class ManifestDiff:
    """Set difference between two manifests, each list sorted."""

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)


def _relative_key(path: Path, root: Optional[Path]) -> str:
    if root is not None:
        try:
            return path.relative_to(root).as_posix()
        except ValueError:
            pass
    return path.as_posix()


def fingerprint(path: PathLike, root: Optional[PathLike] = None) -> Fingerprint:
    """Hash a file and capture its size, permission bits, and mtime.

    Args:
        path: File to fingerprint.
        root: If given, the recorded path is relative to this directory.

    Returns:
        Fingerprint of the file.

    Raises:
        FingerprintError: If the file cannot be opened, read, or stat'ed.
    """
    file_path = Path(path)
    h = hashlib.sha256()
    try:
        with open(file_path, "rb") as f:
            st = os.fstat(f.fileno())
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                h.update(chunk)
    except OSError as exc:
        raise FingerprintError(file_path, exc.strerror or str(exc)) from exc

    mode = stat.S_IMODE(st.st_mode) if os.name == "posix" else 0

    return Fingerprint(
        path=_relative_key(file_path, Path(root) if root is not None else None),
        hash=h.hexdigest(),
        size=st.st_size,
        mode=mode,
        modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
    )


def build_manifest(
    paths: Iterable[PathLike],
    root: Optional[PathLike] = None,
    policy: BatchPolicy = BatchPolicy.BEST_EFFORT,
) -> Manifest:
    """Fingerprint each path into a new manifest.

    Args:
        paths: Files to fingerprint, each independently.
        root: Directory the manifest keys are relative to.
        policy: BEST_EFFORT drops files that fail; STRICT raises.

    Returns:
        The new Manifest.

    Raises:
        FingerprintError: Under STRICT, for the first file that fails.
    """
    manifest = Manifest()
    for p in paths:
        try:
            manifest.add(fingerprint(p, root))
        except FingerprintError as exc:
            if policy is BatchPolicy.STRICT:
                raise
            logger.warning("Omitting from manifest: %s", exc)
    logger.debug("Built manifest with %d file(s)", len(manifest))
    return manifest


def save_manifest(manifest: Manifest, path: PathLike) -> None:
    """Write the manifest as indented JSON with sorted keys."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    data = manifest.model_dump(mode="json")
    out.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    logger.debug("Saved manifest (%d files) to %s", len(manifest), out)


def load_manifest(path: PathLike) -> Manifest:
    """Read a manifest written by save_manifest.

    Raises:
        ManifestParseError: If the file is unreadable or malformed.
    """
    src = Path(path)
    try:
        data = json.loads(src.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ManifestParseError(f"Failed to read manifest from {src}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ManifestParseError(f"Failed to parse manifest {src}: {exc}") from exc

    try:
        return Manifest.model_validate(data)
    except ValidationError as exc:
        raise ManifestParseError(f"Invalid manifest {src}: {exc}") from exc


def diff_manifests(old: Manifest, new: Manifest) -> ManifestDiff:
    """Compare two manifests by key and hash. Touches no files."""
    old_keys = set(old.files)
    new_keys = set(new.files)
    return ManifestDiff(
        added=sorted(new_keys - old_keys),
        deleted=sorted(old_keys - new_keys),
        modified=sorted(
            p for p in old_keys & new_keys
            if old.files[p].hash != new.files[p].hash
        ),
    )


def verify_manifest(manifest: Manifest, root: PathLike) -> list[str]:
    """Re-hash every tracked file under ``root``.

    Returns:
        Sorted relative paths that are missing, unreadable, or whose
        hash differs from the stored one. Empty means all verified.
    """
    base = Path(root)
    invalid = []
    for rel in manifest.paths():
        try:
            current = fingerprint(base / rel)
        except FingerprintError as exc:
            logger.debug("Verify: %s", exc)
            invalid.append(rel)
            continue
        if current.hash != manifest.files[rel].hash:
            invalid.append(rel)
    return invalid
