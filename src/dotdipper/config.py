"""
Configuration layer -- load, save, and initialize config.yaml.

Layout of the dotdipper base directory:

    ~/.dotdipper/
    ├── config.yaml      # DotdipperConfig
    ├── manifest.lock    # Manifest of the compiled tree
    └── compiled/        # canonical copies of tracked files
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import DotdipperConfig

logger = logging.getLogger("dotdipper.config")

CONFIG_FILENAME = "config.yaml"
MANIFEST_FILENAME = "manifest.lock"
COMPILED_DIRNAME = "compiled"


class ConfigError(Exception):
    """Raised when the configuration is missing or cannot be parsed."""


def config_path(base: Path) -> Path:
    return base / CONFIG_FILENAME


def manifest_path(base: Path) -> Path:
    return base / MANIFEST_FILENAME


def compiled_dir(base: Path) -> Path:
    return base / COMPILED_DIRNAME


def init_config(path: Path, force: bool = False) -> DotdipperConfig:
    """Write a default configuration and create the compiled directory.

    Args:
        path: Where config.yaml should live.
        force: Overwrite an existing file.

    Returns:
        The default configuration that was written.

    Raises:
        ConfigError: If the file exists and ``force`` is not set.
    """
    if path.exists() and not force:
        raise ConfigError(
            f"Config already exists at {path}. Use --force to overwrite."
        )

    config = DotdipperConfig()
    save_config(path, config)
    compiled_dir(path.parent).mkdir(parents=True, exist_ok=True)
    logger.info("Initialized config at %s", path)
    return config


def load_config(path: Path) -> DotdipperConfig:
    """Load and validate config.yaml.

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid.
    """
    if not path.exists():
        raise ConfigError(
            f"Config not found at {path}. Run 'dotdipper init' first."
        )

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read config {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping")

    try:
        return DotdipperConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config {path}: {exc}") from exc


def save_config(path: Path, config: DotdipperConfig) -> None:
    """Persist the configuration as YAML."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json")
    path.write_text(
        yaml.dump(data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )


def add_tracked(path: Path, files: Iterable[str]) -> DotdipperConfig:
    """Add files to ``general.tracked_files``, keeping the list unique and sorted."""
    config = load_config(path)
    tracked = set(config.general.tracked_files)
    added = [f for f in files if f not in tracked]
    tracked.update(added)
    config.general.tracked_files = sorted(tracked)
    save_config(path, config)
    if added:
        logger.info("Now tracking %d more file(s)", len(added))
    return config
