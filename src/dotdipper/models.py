"""
Pydantic models for dotdipper configuration.

Mirrors config.yaml one-to-one. Every section has defaults so an
empty file is a valid configuration.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RestoreMode(str, Enum):
    """How a tracked file is materialized in the target root."""

    SYMLINK = "symlink"
    COPY = "copy"


class FileOverride(BaseModel):
    """Per-path override, keyed by a home-relative path like ``~/.bashrc``."""

    mode: Optional[RestoreMode] = None
    exclude: bool = False


class GeneralConfig(BaseModel):
    """Top-level behaviour for snapshot and apply."""

    default_mode: RestoreMode = RestoreMode.SYMLINK
    backup: bool = True
    tracked_files: list[str] = Field(default_factory=list)


class SecretsConfig(BaseModel):
    """Encryption provider settings.

    Only ``age`` is supported. ``key_path`` points at an age identity
    file holding both the secret key and its ``# public key:`` line.
    """

    provider: str = "age"
    key_path: str = "~/.config/age/keys.txt"


class HooksConfig(BaseModel):
    """Shell commands run around apply and snapshot, in order."""

    pre_apply: list[str] = Field(default_factory=list)
    post_apply: list[str] = Field(default_factory=list)
    pre_snapshot: list[str] = Field(default_factory=list)
    post_snapshot: list[str] = Field(default_factory=list)


class DotdipperConfig(BaseModel):
    """Complete dotdipper configuration."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    files: dict[str, FileOverride] = Field(default_factory=dict)
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)

    def override_for(self, rel_path: str) -> Optional[FileOverride]:
        """Look up the override for a path relative to the target root."""
        return self.files.get(f"~/{rel_path}")
