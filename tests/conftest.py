"""Shared test fixtures for dotdipper."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from dotdipper.config import config_path, init_config
from dotdipper.hashing import BatchPolicy, Manifest, build_manifest


@pytest.fixture
def target_root(tmp_path: Path) -> Path:
    """A fake home directory."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def compiled_root(tmp_path: Path) -> Path:
    """An empty compiled tree."""
    compiled = tmp_path / "compiled"
    compiled.mkdir()
    return compiled


@pytest.fixture
def dot_home(tmp_path: Path) -> Path:
    """An initialized dotdipper base directory with default config."""
    base = tmp_path / ".dotdipper"
    init_config(config_path(base))
    return base


@pytest.fixture
def populate() -> Callable[[Path, dict[str, str]], Manifest]:
    """Write text files under a root and return their manifest."""

    def _populate(root: Path, files: dict[str, str]) -> Manifest:
        paths = []
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
            paths.append(path)
        return build_manifest(paths, root=root, policy=BatchPolicy.STRICT)

    return _populate
