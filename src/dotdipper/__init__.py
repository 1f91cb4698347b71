"""
dotdipper: manifest-based dotfile synchronization.

Snapshot your configuration files into a canonical compiled tree,
fingerprint them into a manifest, and reconcile any home directory
against it with symlinks or copies.
"""

import os

__version__ = "0.1.0"

DOTDIPPER_HOME = os.environ.get("DOTDIPPER_HOME", "~/.dotdipper")
TARGET_ROOT = os.environ.get("DOTDIPPER_TARGET", "~")
