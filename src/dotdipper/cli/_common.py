"""Shared helpers for the CLI command modules.

Holds the Rich console, the common --home/--target-root options, and
the error funnel that turns engine exceptions into exit status 1.
"""

from __future__ import annotations

import functools
import sys
from pathlib import Path
from typing import Callable, Optional

import click
from rich.console import Console

from .. import DOTDIPPER_HOME, TARGET_ROOT
from ..apply import ApplyError
from ..config import ConfigError, config_path, load_config, manifest_path
from ..diff import DiffStatus
from ..hashing import Manifest, ManifestParseError, load_manifest
from ..hooks import HookError
from ..models import DotdipperConfig
from ..secrets import SecretsError

console = Console()

FATAL_ERRORS = (
    ConfigError,
    ManifestParseError,
    ApplyError,
    HookError,
    SecretsError,
    OSError,
)


def home_option(func: Callable) -> Callable:
    return click.option(
        "--home", default=DOTDIPPER_HOME, type=click.Path(),
        help="dotdipper base directory.",
    )(func)


def target_option(func: Callable) -> Callable:
    return click.option(
        "--target-root", default=TARGET_ROOT, type=click.Path(),
        help="Live directory to reconcile (default: your home).",
    )(func)


def expand(path: str) -> Path:
    return Path(path).expanduser()


def handle_errors(func: Callable) -> Callable:
    """Print fatal engine errors in red and exit 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except FATAL_ERRORS as exc:
            console.print(f"[bold red]Error:[/] {exc}")
            sys.exit(1)

    return wrapper


def load(home: Path) -> DotdipperConfig:
    return load_config(config_path(home))


def load_stored_manifest(home: Path) -> Optional[Manifest]:
    """Load manifest.lock, or print a hint and return None when absent."""
    path = manifest_path(home)
    if not path.exists():
        console.print(
            "[yellow]No manifest found.[/] Run [bold]dotdipper snapshot[/] first."
        )
        return None
    return load_manifest(path)


def status_markup(status: DiffStatus) -> str:
    """Rich markup for a diff status symbol."""
    return {
        DiffStatus.MODIFIED: "[yellow]M[/]",
        DiffStatus.NEW: "[green]A[/]",
        DiffStatus.MISSING: "[red]D[/]",
        DiffStatus.IDENTICAL: "[dim]=[/]",
    }[status]
