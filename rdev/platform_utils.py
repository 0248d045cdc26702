"""
Cross-platform utilities for rdev.

Answers the few questions rdev has about the host: which OS it is,
where settings and logs live, where the stripped copy is staged and how
a received artifact is made executable.

Supported platforms:
  - Linux (primary target; inotify-backed watching)
  - macOS 12+ (FSEvents-backed watching)
  - Windows (sender only; executable bits are not meaningful there)
"""

from __future__ import annotations

import os
import stat
import sys
import tempfile
from pathlib import Path

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"
IS_LINUX: bool = sys.platform.startswith("linux")

# rwxr-xr-x
EXECUTABLE_MODE = (
    stat.S_IRWXU
    | stat.S_IRGRP | stat.S_IXGRP
    | stat.S_IROTH | stat.S_IXOTH
)

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory (not created).

    - Windows : ``%APPDATA%\\rdev``
    - macOS   : ``~/Library/Application Support/rdev``
    - Linux   : ``$XDG_CONFIG_HOME/rdev`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))
    return Path(base) / "rdev"


def get_config_path() -> Path:
    """Return the path of the default configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the default path for the rotating log file."""
    return get_config_dir() / "rdev.log"


def get_temp_dir() -> Path:
    """Return where the sender stages its stripped copy.

    ``/tmp`` on POSIX so the stripped artifact is easy to find; the system
    temp directory elsewhere.
    """
    if IS_WINDOWS:
        return Path(tempfile.gettempdir())
    return Path("/tmp")


# ---- permissions -------------------------------------------------------


def make_executable(fd: int) -> None:
    """Force :data:`EXECUTABLE_MODE` on an open file descriptor.

    ``open(..., mode)`` only applies the mode when the file is created, and
    the umask may strip bits from it, so the receiver sets it explicitly.
    """
    if IS_WINDOWS:
        return
    os.fchmod(fd, EXECUTABLE_MODE)
