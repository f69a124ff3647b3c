"""
Platform and path helpers for Clawstash.

Centralizes where Clawstash keeps its files so the rest of the codebase
does not build paths by hand.
"""

import os
import shutil
import sys
from pathlib import Path


def is_windows() -> bool:
    """Return True when running on Windows."""
    return sys.platform.startswith("win")


def config_dir() -> Path:
    """Return the Clawstash configuration directory.

    Uses ``$XDG_CONFIG_HOME/clawstash`` when set, otherwise
    ``~/.config/clawstash``.
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "clawstash"
    return Path.home() / ".config" / "clawstash"


def bin_dir() -> Path:
    """Return the directory for a locally installed restic binary."""
    return Path.home() / ".clawstash" / "bin"


def default_openclaw_dir() -> Path:
    return Path.home() / ".openclaw"


def restic_binary_name() -> str:
    return "restic.exe" if is_windows() else "restic"


def restic_binary_path() -> str:
    """Return the restic binary to run.

    Prefers a binary installed under ``~/.clawstash/bin``, then one on
    ``PATH``, and finally the bare name so the error surfaces at run time.
    """
    local = bin_dir() / restic_binary_name()
    if local.exists():
        return str(local)
    found = shutil.which(restic_binary_name())
    return found or restic_binary_name()
