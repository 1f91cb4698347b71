"""Reconciliation commands: diff, apply."""

from __future__ import annotations

from typing import Optional

import click
from rich.table import Table

from ._common import (
    console,
    expand,
    handle_errors,
    home_option,
    load,
    load_stored_manifest,
    status_markup,
    target_option,
)
from ..apply import ApplyOpts, apply
from ..config import compiled_dir
from ..diff import (
    DiffEntry,
    DiffStatus,
    compute_diff,
    content_diff,
    count_by_status,
    filter_by_paths,
    select_entries,
)
from ..hooks import run_hooks
from ..secrets import is_encrypted
from ..summary import render_summary, summarize


def _split_only(only: Optional[str]) -> list[str]:
    if not only:
        return []
    return [p.strip() for p in only.split(",") if p.strip()]


_LINE_STYLES = {"+": "green", "-": "red", "@": "cyan"}


def _print_content_diff(entry: DiffEntry) -> None:
    detail = content_diff(entry)
    if detail.encrypted:
        console.print("    [dim](encrypted, content not compared)[/]")
    elif detail.missing:
        console.print("    [red]File missing from system[/]")
    elif detail.binary:
        console.print("    [dim](binary file)[/]")
        if detail.target_size is not None:
            console.print(
                f"    Source: {detail.source_size} bytes, Target: {detail.target_size} bytes"
            )
    elif not detail.lines:
        console.print("    [yellow]Differs from source[/]")
    else:
        for line in detail.lines:
            console.print(
                f"    {line}", style=_LINE_STYLES.get(line[:1]),
                markup=False, highlight=False, soft_wrap=True,
            )


def register_apply_commands(main: click.Group) -> None:
    """Register diff and apply on the main group."""

    @main.command("diff")
    @home_option
    @target_option
    @click.option("--all", "show_all", is_flag=True, help="Also list identical files.")
    @click.option("--detailed", is_flag=True, help="Show content changes of modified files.")
    @handle_errors
    def diff_cmd(home: str, target_root: str, show_all: bool, detailed: bool):
        """Compare the compiled tree with the live files."""
        base = expand(home)
        manifest = load_stored_manifest(base)
        if manifest is None:
            return

        entries = compute_diff(compiled_dir(base), manifest, expand(target_root))
        counts = count_by_status(entries)

        console.print("\n[bold]Diff Summary[/]")
        console.print(f"  [yellow]{counts[DiffStatus.MODIFIED]}[/] modified")
        console.print(f"  [red]{counts[DiffStatus.MISSING]}[/] missing from system")
        console.print(f"  [dim]{counts[DiffStatus.IDENTICAL]}[/] identical\n")

        shown = entries if show_all else select_entries(entries)
        if not shown:
            return

        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("S")
        table.add_column("Path", style="cyan")
        table.add_column("Status", style="dim")
        for entry in shown:
            table.add_row(status_markup(entry.status), f"~/{entry.rel_path}", entry.status.description)
        console.print(table)

        encrypted = [
            e for e in shown
            if e.status is DiffStatus.MODIFIED and is_encrypted(e.rel_path)
        ]
        if encrypted:
            console.print(
                f"\n[dim]{len(encrypted)} encrypted file(s) are compared by ciphertext "
                "and always show as modified.[/]"
            )

        if not detailed:
            return
        for entry in shown:
            if entry.status is not DiffStatus.MODIFIED:
                continue
            console.print(f"\n[bold yellow]M[/] ~/{entry.rel_path}")
            _print_content_diff(entry)

    @main.command("apply")
    @home_option
    @target_option
    @click.option("--force", "-f", is_flag=True, help="Overwrite without asking.")
    @click.option("--only", default=None, help="Comma-separated paths to restrict the apply to.")
    @click.option(
        "--unsafe-allow-outside-home", "allow_outside_home", is_flag=True,
        help="Permit writing targets outside the target root.",
    )
    @handle_errors
    def apply_cmd(home: str, target_root: str, force: bool, only: Optional[str], allow_outside_home: bool):
        """Symlink or copy compiled files into place.

        Only files that differ from the compiled tree are touched.

        Examples:

            dotdipper apply

            dotdipper apply --only ~/.config/nvim,~/.zshrc --force
        """
        base = expand(home)
        root = expand(target_root)
        config = load(base)
        manifest = load_stored_manifest(base)
        if manifest is None:
            return

        compiled = compiled_dir(base)
        entries = compute_diff(compiled, manifest, root)

        filters = _split_only(only)
        if filters:
            entries = filter_by_paths(entries, filters, root)
            console.print(f"[dim]Filtered to {len(entries)} matching file(s)[/]")

        selected = select_entries(entries)
        if not selected:
            console.print("[green]All files are already up to date.[/]")
            return

        run_hooks(config.hooks.pre_apply, "pre_apply")
        outcomes = apply(
            compiled,
            manifest.subset(e.rel_path for e in selected),
            config,
            ApplyOpts(force=force, allow_outside_home=allow_outside_home),
            root,
        )
        render_summary(summarize(outcomes), console)
        run_hooks(config.hooks.post_apply, "post_apply")

        console.print("\n[bold green]Apply completed.[/]")
