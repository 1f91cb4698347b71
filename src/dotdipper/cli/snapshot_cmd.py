"""Snapshot commands: snapshot, status, verify."""

from __future__ import annotations

import click

from ._common import (
    console,
    expand,
    handle_errors,
    home_option,
    load,
    load_stored_manifest,
    target_option,
)
from ..config import compiled_dir
from ..hashing import verify_manifest
from ..hooks import run_hooks
from ..repo import snapshot, status


def register_snapshot_commands(main: click.Group) -> None:
    """Register snapshot, status, and verify on the main group."""

    @main.command("snapshot")
    @home_option
    @target_option
    @click.option("--force", is_flag=True, help="Snapshot even if nothing changed.")
    @handle_errors
    def snapshot_cmd(home: str, target_root: str, force: bool):
        """Copy tracked files into the compiled tree and record a manifest."""
        base = expand(home)
        config = load(base)

        run_hooks(config.hooks.pre_snapshot, "pre_snapshot")
        result = snapshot(config, base, expand(target_root), force=force)
        if result.created:
            changes = result.changes
            console.print(
                f"[bold green]Snapshot created[/] with {result.file_count} file(s) "
                f"[dim](+{len(changes.added)} ~{len(changes.modified)} "
                f"-{len(changes.deleted)})[/]"
            )
        else:
            console.print(
                f"[dim]No changes detected, {result.file_count} file(s) unchanged.[/]"
            )
        run_hooks(config.hooks.post_snapshot, "post_snapshot")

    @main.command("status")
    @home_option
    @target_option
    @click.option("--detailed", is_flag=True, help="List the changed files.")
    @handle_errors
    def status_cmd(home: str, target_root: str, detailed: bool):
        """Show tracked files changed since the last snapshot."""
        base = expand(home)
        result = status(load(base), base, expand(target_root))

        if result.is_clean:
            console.print("[green]No changes detected - everything is up to date.[/]")
            return

        console.print(
            f"[yellow]Changes detected:[/] {len(result.modified)} modified, "
            f"{len(result.added)} added, {len(result.deleted)} deleted"
        )
        if not detailed:
            console.print("[dim]Use --detailed to list them.[/]")
            return

        for heading, label, style, items in (
            ("Modified files:", "M", "yellow", result.modified),
            ("Added files:", "A", "green", result.added),
            ("Deleted files:", "D", "red", result.deleted),
        ):
            if not items:
                continue
            console.print(f"\n[bold]{heading}[/]")
            for rel in items:
                console.print(f"  [{style}]{label}[/] ~/{rel}")

    @main.command("verify")
    @home_option
    @target_option
    @click.option("--live", is_flag=True, help="Verify the target root instead of the compiled tree.")
    @handle_errors
    def verify_cmd(home: str, target_root: str, live: bool):
        """Re-hash tracked files and report any that no longer match."""
        base = expand(home)
        manifest = load_stored_manifest(base)
        if manifest is None:
            return

        root = expand(target_root) if live else compiled_dir(base)
        invalid = verify_manifest(manifest, root)
        if not invalid:
            console.print(f"[green]All {len(manifest)} file(s) verified.[/]")
            return

        console.print(f"[yellow]{len(invalid)} file(s) do not match the manifest:[/]")
        for rel in invalid:
            console.print(f"  [red]x[/] {rel}")
