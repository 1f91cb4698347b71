"""Hook runner -- user shell commands around apply and snapshot."""

from __future__ import annotations

import logging
import subprocess
from typing import Sequence

logger = logging.getLogger("dotdipper.hooks")

HOOK_STAGES = ("pre_apply", "post_apply", "pre_snapshot", "post_snapshot")


class HookError(Exception):
    """Raised when a hook cannot be launched or exits non-zero."""

    def __init__(self, command: str, message: str):
        super().__init__(message)
        self.command = command


def run_hook(command: str) -> None:
    """Run one hook through ``sh -c``.

    Raises:
        HookError: If the command fails to start or exits non-zero.
    """
    try:
        result = subprocess.run(["sh", "-c", command], check=False)
    except OSError as exc:
        raise HookError(command, f"Failed to run hook {command!r}: {exc}") from exc

    if result.returncode != 0:
        raise HookError(
            command,
            f"Hook {command!r} failed with exit code {result.returncode}",
        )


def run_hooks(commands: Sequence[str], stage: str) -> int:
    """Run every hook for a stage, in order, stopping at the first failure.

    Returns:
        Number of hooks run.
    """
    for command in commands:
        logger.info("Running %s hook: %s", stage.replace("_", "-"), command)
        run_hook(command)
    return len(commands)
