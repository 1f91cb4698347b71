"""Secrets commands: encrypt, decrypt."""

from __future__ import annotations

from typing import Optional

import click

from ._common import console, expand, handle_errors, home_option, load
from ..secrets import decrypt, encrypt, init_key


def register_secrets_commands(main: click.Group) -> None:
    """Register the secrets command group."""

    @main.group()
    def secrets():
        """Encrypt and decrypt dotfiles with age.

        Files ending in .age in the compiled tree are decrypted on
        apply and written without the suffix.
        """

    @secrets.command("init")
    @home_option
    @handle_errors
    def secrets_init(home: str):
        """Generate an age key, or check the configured one."""
        config = load(expand(home))
        status = init_key(config.secrets)
        if status.created:
            console.print(f"[bold green]Age key generated[/] at {status.key_path}")
            console.print(
                "[dim]Back up this key file securely, it is needed to decrypt your secrets.[/]"
            )
        else:
            console.print(f"[green]Age key is valid[/] at {status.key_path}")
        if status.public_key:
            console.print(f"Public key: {status.public_key}", highlight=False)

    @secrets.command("encrypt")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--output", "-o", default=None, type=click.Path(), help="Output file.")
    @home_option
    @handle_errors
    def secrets_encrypt(path: str, output: Optional[str], home: str):
        """Encrypt PATH to <PATH>.age."""
        config = load(expand(home))
        out = encrypt(config.secrets, expand(path), expand(output) if output else None)
        console.print(f"[green]Encrypted[/] -> {out}")

    @secrets.command("decrypt")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--output", "-o", default=None, type=click.Path(), help="Output file.")
    @home_option
    @handle_errors
    def secrets_decrypt(path: str, output: Optional[str], home: str):
        """Decrypt PATH, dropping the .age suffix."""
        config = load(expand(home))
        out = decrypt(config.secrets, expand(path), expand(output) if output else None)
        console.print(f"[green]Decrypted[/] -> {out}")

