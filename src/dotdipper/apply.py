"""
Apply engine -- reconcile the target root toward the compiled root.

Each manifest entry is processed on its own, in lexicographic order:

    source check -> decrypt (.age) -> safety -> exclusion -> mode
    -> already applied? -> conflict (force / confirm) -> backup
    -> remove existing -> create parents -> symlink | copy

Recoverable problems become a skipped AppliedOutcome with a reason and
processing continues. Filesystem failures while mutating raise
ApplyError and abort the pass; entries applied before it stay applied.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional

import click

from .diff import FileKind, probe
from .hashing import FingerprintError, Manifest, fingerprint
from .models import DotdipperConfig, FileOverride, RestoreMode
from .secrets import SecretsError, decrypt_to_memory, is_encrypted, strip_encrypted_suffix

logger = logging.getLogger("dotdipper.apply")

SKIP_SOURCE_MISSING = "Source not found"
SKIP_DECRYPT_FAILED = "Decryption failed"
SKIP_OUTSIDE_HOME = "Outside $HOME"
SKIP_EXCLUDED = "Excluded"
SKIP_ALREADY_APPLIED = "Already applied"
SKIP_USER_DECLINED = "User declined"

ConfirmFn = Callable[[str], bool]
DecryptFn = Callable[[Path], bytes]


class AppliedMode(str, Enum):
    """What happened to a target."""

    SYMLINKED = "symlinked"
    COPIED = "copied"
    SKIPPED = "skipped"


_MODE_FOR = {
    RestoreMode.SYMLINK: AppliedMode.SYMLINKED,
    RestoreMode.COPY: AppliedMode.COPIED,
}


class ApplyError(Exception):
    """Fatal filesystem error while applying one entry."""

    def __init__(self, path: Path, operation: str, cause: BaseException):
        super().__init__(f"Failed to {operation} {path}: {cause}")
        self.path = Path(path)
        self.operation = operation


@dataclass
class ApplyOpts:
    """Per-invocation switches."""

    force: bool = False
    allow_outside_home: bool = False


@dataclass
class AppliedOutcome:
    """Result of one manifest entry in an apply pass.

    Attributes:
        mode: SYMLINKED or COPIED on success (also when the target was
            already in place), SKIPPED otherwise.
        target: Live path that was (or would have been) written.
        source: Compiled path, or the temporary plaintext for
            encrypted entries.
        backup_created: Whether the previous target was backed up.
        skip_reason: Why nothing was written, if nothing was.
        backup_path: Where the backup went, when one was made.
    """

    mode: AppliedMode
    target: Path
    source: Path
    backup_created: bool = False
    skip_reason: Optional[str] = None
    backup_path: Optional[Path] = None

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None


def _skip(target: Path, source: Path, reason: str) -> AppliedOutcome:
    logger.info("Skipping %s: %s", target, reason)
    return AppliedOutcome(
        mode=AppliedMode.SKIPPED,
        target=target,
        source=source,
        skip_reason=reason,
    )


def _prompt_overwrite(message: str) -> bool:
    return click.confirm(message, default=False)


@contextmanager
def decrypted_source(decrypt: DecryptFn, encrypted_path: Path) -> Iterator[Path]:
    """Decrypt to a private temp file that is removed on exit.

    Raises:
        SecretsError: From ``decrypt``; no temp file exists yet.
        ApplyError: If the plaintext cannot be written.
    """
    plaintext = decrypt(encrypted_path)
    fd, name = tempfile.mkstemp(prefix="dotdipper-", suffix=".plain")
    temp_path = Path(name)
    try:
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(plaintext)
        except OSError as exc:
            raise ApplyError(temp_path, "write decrypted plaintext to", exc) from exc
        yield temp_path
    finally:
        temp_path.unlink(missing_ok=True)


def is_within(path: Path, root: Path) -> bool:
    """Lexical containment check after normalizing ``..`` segments."""
    p = os.path.normpath(os.path.abspath(path))
    r = os.path.normpath(os.path.abspath(root))
    return p == r or p.startswith(r.rstrip(os.sep) + os.sep)


def _tree_hashes(root: Path) -> dict[str, str]:
    hashes = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in filenames:
            full = Path(dirpath) / name
            hashes[full.relative_to(root).as_posix()] = fingerprint(full).hash
    return hashes


def is_already_applied(
    source: Path,
    target: Path,
    mode: RestoreMode,
    kind: Optional[FileKind],
) -> bool:
    """Whether ``target`` already is what ``mode`` would make of ``source``."""
    if kind is None:
        return False

    if mode is RestoreMode.SYMLINK:
        if kind is not FileKind.SYMLINK:
            return False
        try:
            return os.readlink(target) == str(source)
        except OSError:
            return False

    try:
        if kind is FileKind.REGULAR and source.is_file():
            return fingerprint(source).hash == fingerprint(target).hash
        if kind is FileKind.DIRECTORY and source.is_dir():
            return _tree_hashes(source) == _tree_hashes(target)
    except FingerprintError as exc:
        logger.debug("Cannot compare %s: %s", target, exc)
    return False


def create_backup(path: Path, kind: FileKind) -> Path:
    """Copy ``path`` to a timestamped sibling ``<name>.bak.<stamp>``.

    Raises:
        ApplyError: If the copy fails.
    """
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    backup = path.with_name(f"{path.name}.bak.{stamp}")
    n = 1
    while os.path.lexists(backup):
        backup = path.with_name(f"{path.name}.bak.{stamp}.{n}")
        n += 1

    try:
        if kind is FileKind.DIRECTORY:
            shutil.copytree(path, backup, symlinks=True)
        else:
            shutil.copy2(path, backup)
    except OSError as exc:
        raise ApplyError(path, "back up", exc) from exc

    logger.info("Backed up %s to %s", path, backup)
    return backup


def _remove(path: Path, kind: FileKind) -> None:
    try:
        if kind is FileKind.DIRECTORY:
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as exc:
        raise ApplyError(path, "remove existing", exc) from exc


def _copy_file(source: Path, target: Path) -> None:
    try:
        shutil.copyfile(source, target)
    except OSError as exc:
        raise ApplyError(target, "copy to", exc) from exc
    try:
        shutil.copystat(source, target)
    except OSError as exc:
        raise ApplyError(target, "set permissions on", exc) from exc


def _copy_tree(source: Path, target: Path) -> None:
    try:
        shutil.copytree(source, target, copy_function=shutil.copy2)
    except (OSError, shutil.Error) as exc:
        raise ApplyError(target, "copy directory to", exc) from exc


def _execute(source: Path, target: Path, mode: RestoreMode) -> AppliedMode:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ApplyError(target.parent, "create parent directory", exc) from exc

    if mode is RestoreMode.SYMLINK:
        try:
            os.symlink(source, target)
        except OSError as exc:
            raise ApplyError(target, "symlink", exc) from exc
    elif source.is_dir():
        _copy_tree(source, target)
    else:
        _copy_file(source, target)

    return _MODE_FOR[mode]


def _override(config: DotdipperConfig, rel: str, target_rel: str) -> Optional[FileOverride]:
    return config.override_for(rel) or config.override_for(target_rel)


def _apply_entry(
    rel: str,
    compiled: Path,
    home: Path,
    config: DotdipperConfig,
    opts: ApplyOpts,
    confirm: ConfirmFn,
    decrypt: DecryptFn,
    stack: ExitStack,
) -> AppliedOutcome:
    source = compiled / rel
    target = home / rel

    if not source.exists():
        return _skip(target, source, SKIP_SOURCE_MISSING)

    forced_mode = None
    if is_encrypted(source):
        target = strip_encrypted_suffix(target)
        try:
            source = stack.enter_context(decrypted_source(decrypt, source))
        except SecretsError as exc:
            logger.warning("Failed to decrypt %s: %s", rel, exc)
            return _skip(target, source, SKIP_DECRYPT_FAILED)
        # a link to the temp plaintext would dangle once it is removed
        forced_mode = RestoreMode.COPY

    if not opts.allow_outside_home and not is_within(target, home):
        return _skip(target, source, SKIP_OUTSIDE_HOME)

    override = _override(config, rel, strip_encrypted_suffix(Path(rel)).as_posix())
    if override is not None and override.exclude:
        return _skip(target, source, SKIP_EXCLUDED)

    if forced_mode is not None:
        mode = forced_mode
    elif override is not None and override.mode is not None:
        mode = override.mode
    else:
        mode = config.general.default_mode

    kind = probe(target)
    if is_already_applied(source, target, mode, kind):
        logger.debug("Already applied: %s", target)
        return AppliedOutcome(
            mode=_MODE_FOR[mode],
            target=target,
            source=source,
            skip_reason=SKIP_ALREADY_APPLIED,
        )

    backup_path = None
    if kind is not None:
        if not opts.force and not confirm(f"Overwrite {target}?"):
            return _skip(target, source, SKIP_USER_DECLINED)
        if config.general.backup and kind is not FileKind.SYMLINK:
            backup_path = create_backup(target, kind)
        _remove(target, kind)

    applied = _execute(source, target, mode)
    logger.info("%s %s -> %s", applied.value.capitalize(), target, source)
    return AppliedOutcome(
        mode=applied,
        target=target,
        source=source,
        backup_created=backup_path is not None,
        backup_path=backup_path,
    )


def apply(
    compiled_root: Path,
    manifest: Manifest,
    config: DotdipperConfig,
    opts: ApplyOpts,
    target_root: Path,
    confirm: Optional[ConfirmFn] = None,
    decrypt: Optional[DecryptFn] = None,
) -> list[AppliedOutcome]:
    """Make ``target_root`` match ``compiled_root`` for every manifest entry.

    Args:
        compiled_root: Canonical tree; symlinks point at absolute paths in it.
        manifest: Entries to apply. Read-only.
        config: Default mode, backup switch, and per-path overrides.
        opts: force / allow_outside_home switches.
        target_root: Live tree, normally the home directory.
        confirm: Asked before overwriting when ``force`` is off.
            Defaults to a click prompt answering no.
        decrypt: Returns plaintext for an ``.age`` file. Defaults to
            the configured age identity.

    Returns:
        One AppliedOutcome per entry, in lexicographic path order.

    Raises:
        ApplyError: On the first fatal filesystem error.
    """
    compiled = Path(os.path.abspath(compiled_root))
    home = Path(os.path.abspath(target_root))
    confirm_fn = confirm or _prompt_overwrite
    decrypt_fn = decrypt or (lambda path: decrypt_to_memory(config.secrets, path))

    outcomes = []
    for rel in manifest.paths():
        with ExitStack() as stack:
            outcomes.append(_apply_entry(
                rel, compiled, home, config, opts, confirm_fn, decrypt_fn, stack,
            ))

    logger.info("Apply pass finished: %d entries", len(outcomes))
    return outcomes
