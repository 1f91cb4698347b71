"""
dotdipper CLI.

The main Click group is defined here; each command group lives in
its own module and is attached through a register function.

Entry point: dotdipper.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="dotdipper")
@click.option("--verbose", "-v", is_flag=True, help="Log engine decisions to stderr.")
def main(verbose: bool):
    """Snapshot your dotfiles, then diff and apply them anywhere."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )


from .setup import register_setup_commands
from .snapshot_cmd import register_snapshot_commands
from .apply_cmd import register_apply_commands
from .secrets_cmd import register_secrets_commands

register_setup_commands(main)
register_snapshot_commands(main)
register_apply_commands(main)
register_secrets_commands(main)
