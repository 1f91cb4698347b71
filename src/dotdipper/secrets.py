"""
Encryption collaborator -- age-encrypted dotfiles.

Files whose name ends in ``.age`` are stored encrypted in the compiled
tree and decrypted on apply. Encryption itself is delegated to the
``age`` binary; this module only shells out and reports failures.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

from .models import SecretsConfig

logger = logging.getLogger("dotdipper.secrets")

ENCRYPTED_SUFFIX = ".age"
PUBLIC_KEY_PREFIX = "# public key: "
SECRET_KEY_MARKER = "AGE-SECRET-KEY-"
KEY_FILE_MODE = 0o600
SUPPORTED_PROVIDERS = ("age",)


class SecretsError(Exception):
    """Raised when encryption or decryption cannot be completed."""


def is_encrypted(path: Path | str) -> bool:
    """Whether a path names an encrypted file."""
    return str(path).endswith(ENCRYPTED_SUFFIX)


def strip_encrypted_suffix(path: Path) -> Path:
    """Drop the ``.age`` suffix; other paths are returned unchanged."""
    if is_encrypted(path):
        return path.with_name(path.name[: -len(ENCRYPTED_SUFFIX)])
    return path


def _check_provider(cfg: SecretsConfig) -> None:
    if cfg.provider.lower() not in SUPPORTED_PROVIDERS:
        raise SecretsError(f"Unknown secrets provider: {cfg.provider}")


def _key_path(cfg: SecretsConfig) -> Path:
    key_path = Path(cfg.key_path).expanduser()
    if not key_path.exists():
        raise SecretsError(
            f"Age key not found at {key_path}. Generate one with age-keygen."
        )
    return key_path


def _public_key(key_path: Path) -> str:
    for line in key_path.read_text(encoding="utf-8").splitlines():
        if line.startswith(PUBLIC_KEY_PREFIX):
            return line[len(PUBLIC_KEY_PREFIX):].strip()
    raise SecretsError(f"Could not find public key in age key file {key_path}")


def _run_age(args: list[str], binary: str = "age") -> bytes:
    if shutil.which(binary) is None:
        raise SecretsError(f"{binary} not found in PATH. Is age installed?")
    try:
        result = subprocess.run(
            [binary, *args],
            capture_output=True,
            check=False,
        )
    except OSError as exc:
        raise SecretsError(f"Failed to run {binary}: {exc}") from exc

    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise SecretsError(f"{binary} exited with {result.returncode}: {stderr}")
    return result.stdout


def decrypt_to_memory(cfg: SecretsConfig, encrypted_path: Path) -> bytes:
    """Decrypt a file and return the plaintext without writing it to disk.

    Raises:
        SecretsError: If the provider, key, or ``age`` invocation fails.
    """
    _check_provider(cfg)
    key_path = _key_path(cfg)
    logger.debug("Decrypting %s", encrypted_path)
    return _run_age(["--decrypt", "--identity", str(key_path), str(encrypted_path)])


def encrypt(
    cfg: SecretsConfig,
    input_path: Path,
    output_path: Optional[Path] = None,
) -> Path:
    """Encrypt ``input_path`` to the identity's public key.

    Args:
        cfg: Secrets configuration.
        input_path: Plaintext file.
        output_path: Destination. Defaults to ``<input>.age``.

    Returns:
        Path of the encrypted file.
    """
    _check_provider(cfg)
    if not input_path.exists():
        raise SecretsError(f"Input file does not exist: {input_path}")
    recipient = _public_key(_key_path(cfg))
    out = output_path or input_path.with_name(input_path.name + ENCRYPTED_SUFFIX)

    _run_age(["--encrypt", "--recipient", recipient, "--output", str(out), str(input_path)])
    logger.info("Encrypted %s -> %s", input_path, out)
    return out


def decrypt(
    cfg: SecretsConfig,
    input_path: Path,
    output_path: Optional[Path] = None,
) -> Path:
    """Decrypt ``input_path`` to a file.

    The default output drops the ``.age`` suffix, or appends
    ``.decrypted`` when there is none.
    """
    _check_provider(cfg)
    if not input_path.exists():
        raise SecretsError(f"Input file does not exist: {input_path}")
    key_path = _key_path(cfg)

    if output_path is not None:
        out = output_path
    elif is_encrypted(input_path):
        out = strip_encrypted_suffix(input_path)
    else:
        out = input_path.with_name(input_path.name + ".decrypted")

    _run_age(["--decrypt", "--identity", str(key_path), "--output", str(out), str(input_path)])
    logger.info("Decrypted %s -> %s", input_path, out)
    return out


@dataclass
class KeyStatus:
    """Outcome of init_key."""

    key_path: Path
    created: bool
    public_key: Optional[str] = None


def _find_public_key(key_path: Path) -> Optional[str]:
    try:
        return _public_key(key_path)
    except SecretsError:
        return None


def init_key(cfg: SecretsConfig) -> KeyStatus:
    """Generate an age identity at ``key_path``, or validate the one there.

    New keys are written by ``age-keygen`` and restricted to mode 0600.

    Raises:
        SecretsError: If an existing key file holds no secret key, or
            ``age-keygen`` is missing or fails.
    """
    _check_provider(cfg)
    key_path = Path(cfg.key_path).expanduser()

    if key_path.exists():
        if SECRET_KEY_MARKER not in key_path.read_text(encoding="utf-8"):
            raise SecretsError(f"Invalid age key file at {key_path}")
        logger.info("Age key already exists at %s", key_path)
        return KeyStatus(key_path, created=False, public_key=_find_public_key(key_path))

    key_path.parent.mkdir(parents=True, exist_ok=True)
    _run_age(["-o", str(key_path)], binary="age-keygen")
    if os.name == "posix":
        os.chmod(key_path, KEY_FILE_MODE)
    logger.info("Generated age key at %s", key_path)
    return KeyStatus(key_path, created=True, public_key=_find_public_key(key_path))
