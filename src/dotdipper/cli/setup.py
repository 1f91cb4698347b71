"""Setup commands: init, track, config."""

from __future__ import annotations

import os
from pathlib import Path

import click
import yaml

from ._common import console, expand, handle_errors, home_option, load, target_option
from ..config import add_tracked, config_path, init_config


def _as_tracked_entry(raw: str, target_root: Path) -> str:
    """Store paths under the target root as ``~/rel``; others unchanged."""
    if raw.startswith("~"):
        return raw
    path = Path(os.path.abspath(raw))
    try:
        return "~/" + path.relative_to(target_root).as_posix()
    except ValueError:
        return str(path)


def register_setup_commands(main: click.Group) -> None:
    """Register init, track, and config on the main group."""

    @main.command()
    @home_option
    @click.option("--force", is_flag=True, help="Overwrite an existing config.")
    @handle_errors
    def init(home: str, force: bool):
        """Create config.yaml and the compiled directory."""
        path = config_path(expand(home))
        init_config(path, force=force)
        console.print(f"[bold green]Initialized[/] {path}")
        console.print("[dim]Add files with 'dotdipper track <path>'.[/]")

    @main.command()
    @click.argument("paths", nargs=-1, required=True)
    @home_option
    @target_option
    @handle_errors
    def track(paths: tuple[str, ...], home: str, target_root: str):
        """Add files to the tracked set.

        Examples:

            dotdipper track ~/.bashrc ~/.gitconfig
        """
        root = Path(os.path.abspath(expand(target_root)))
        entries = [_as_tracked_entry(p, root) for p in paths]
        config = add_tracked(config_path(expand(home)), entries)
        console.print(
            f"Tracking [bold]{len(config.general.tracked_files)}[/] file(s)"
        )

    @main.command("config")
    @home_option
    @click.option("--show", is_flag=True, help="Print the effective configuration.")
    @handle_errors
    def config_cmd(home: str, show: bool):
        """Validate and optionally print the configuration."""
        config = load(expand(home))
        if show:
            console.print(
                yaml.dump(config.model_dump(mode="json"), default_flow_style=False, sort_keys=False),
                markup=False,
                highlight=False,
            )
        else:
            console.print("[green]Configuration is valid.[/] Use --show to print it.")
