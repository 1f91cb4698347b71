"""
Snapshot and status of tracked files.

A snapshot fingerprints every tracked file under the target root,
copies it into the compiled tree, and replaces manifest.lock with the
new manifest. Status compares the live tracked files to that manifest.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .apply import is_within
from .config import compiled_dir, manifest_path
from .hashing import (
    BatchPolicy,
    FingerprintError,
    Manifest,
    ManifestDiff,
    build_manifest,
    diff_manifests,
    fingerprint,
    load_manifest,
    save_manifest,
)
from .models import DotdipperConfig

logger = logging.getLogger("dotdipper.repo")


@dataclass
class SnapshotResult:
    """Outcome of a snapshot.

    Attributes:
        file_count: Files in the manifest now on disk.
        created: False when nothing changed and the old manifest was kept.
        changes: Difference from the previous manifest.
        manifest_file: Where the manifest lives.
    """

    file_count: int
    created: bool
    changes: ManifestDiff
    manifest_file: Path


@dataclass
class Status:
    """Live tracked files compared to the stored manifest."""

    modified: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.modified or self.added or self.deleted)


def expand_tracked(entry: str, target_root: Path) -> Path:
    """Turn a tracked-file entry (``~/x``, relative, or absolute) into a path."""
    if entry == "~":
        return target_root
    if entry.startswith("~/"):
        path = target_root / entry[2:]
    else:
        path = Path(entry)
        if not path.is_absolute():
            path = target_root / path
    return Path(os.path.normpath(path))


def tracked_paths(config: DotdipperConfig, target_root: Path) -> list[Path]:
    """Tracked files under ``target_root``; others are logged and dropped."""
    paths = []
    for entry in config.general.tracked_files:
        path = expand_tracked(entry, target_root)
        if not is_within(path, target_root):
            logger.warning("Ignoring tracked file outside %s: %s", target_root, entry)
            continue
        paths.append(path)
    return paths


def _load_existing(base: Path) -> Optional[Manifest]:
    path = manifest_path(base)
    if not path.exists():
        return None
    return load_manifest(path)


def _rel(path: Path, target_root: Path) -> str:
    return path.relative_to(target_root).as_posix()


def _has_changes(manifest: Manifest, paths: list[Path], target_root: Path) -> bool:
    live_keys = {_rel(p, target_root) for p in paths if p.is_file()}
    if live_keys != set(manifest.files):
        return True
    for path in paths:
        if not path.is_file():
            continue
        stored = manifest.get(_rel(path, target_root))
        try:
            current = fingerprint(path)
        except FingerprintError:
            return True
        if stored is None or stored.hash != current.hash:
            return True
    return False


def snapshot(
    config: DotdipperConfig,
    base: Path,
    target_root: Path,
    force: bool = False,
    policy: BatchPolicy = BatchPolicy.BEST_EFFORT,
) -> SnapshotResult:
    """Capture tracked files into the compiled tree and save a new manifest.

    Args:
        config: Supplies ``general.tracked_files``.
        base: dotdipper base directory (holds compiled/ and manifest.lock).
        target_root: Directory tracked files are relative to.
        force: Snapshot even when nothing changed.
        policy: How unreadable tracked files are handled.

    Returns:
        SnapshotResult describing what was written.
    """
    target_root = Path(os.path.abspath(target_root))
    paths = tracked_paths(config, target_root)
    previous = _load_existing(base)
    out = manifest_path(base)

    if not force and previous is not None and not _has_changes(previous, paths, target_root):
        logger.info("No changes detected, keeping existing manifest")
        return SnapshotResult(
            file_count=len(previous),
            created=False,
            changes=ManifestDiff(),
            manifest_file=out,
        )

    manifest = build_manifest(paths, root=target_root, policy=policy)
    compiled = compiled_dir(base)

    for rel in manifest.paths():
        src = target_root / rel
        dest = compiled / rel
        # a symlink-mode apply leaves the live path pointing at dest
        if os.path.lexists(dest) and os.path.samefile(src, dest):
            continue
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dest)

    save_manifest(manifest, out)
    changes = diff_manifests(previous or Manifest(), manifest)
    logger.info(
        "Snapshot saved: %d files (%d added, %d modified, %d deleted)",
        len(manifest), len(changes.added), len(changes.modified), len(changes.deleted),
    )
    return SnapshotResult(
        file_count=len(manifest),
        created=True,
        changes=changes,
        manifest_file=out,
    )


def status(config: DotdipperConfig, base: Path, target_root: Path) -> Status:
    """Compare the live tracked files with the stored manifest."""
    target_root = Path(os.path.abspath(target_root))
    paths = tracked_paths(config, target_root)
    manifest = _load_existing(base)

    if manifest is None:
        return Status(added=sorted(_rel(p, target_root) for p in paths))

    result = Status()
    seen = set()
    for path in paths:
        rel = _rel(path, target_root)
        seen.add(rel)
        stored = manifest.get(rel)
        if stored is None:
            if path.exists():
                result.added.append(rel)
            continue
        try:
            current = fingerprint(path)
        except FingerprintError:
            result.deleted.append(rel)
            continue
        if current.hash != stored.hash:
            result.modified.append(rel)

    result.deleted.extend(rel for rel in manifest.paths() if rel not in seen)
    result.modified.sort()
    result.added.sort()
    result.deleted.sort()
    return result
