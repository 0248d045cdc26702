"""Debug-info stripping for the sender.

Stripping is the one step that can't be expressed as a stream wrapper: it
runs an external tool that writes a new file. The sender only needs a
callable ``(source, output) -> reader``, so tests can pass a fake.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO

from rdev.errors import StripError

logger = logging.getLogger(__name__)

Stripper = Callable[[Path, Path], BinaryIO]


def strip_debug_info(source: Path, output: Path, command: str = "strip") -> BinaryIO:
    """Remove debug information from *source*, save it at *output* and
    return a newly-opened reader on the stripped file.
    """
    args = [command, "-o", str(output), str(source)]
    logger.debug("Running %s", args)
    try:
        subprocess.run(args, check=True)
    except OSError as exc:
        raise StripError(f"Could not run '{command}'") from exc
    except subprocess.CalledProcessError as exc:
        raise StripError(f"'{command}' failed on {source} (exit {exc.returncode})") from exc
    try:
        return open(output, "rb")
    except OSError as exc:
        raise StripError(f"Stripped output missing: {output}") from exc


def make_stripper(command: str = "strip") -> Stripper:
    """Return a :data:`Stripper` that invokes *command*."""

    def _strip(source: Path, output: Path) -> BinaryIO:
        return strip_debug_info(source, output, command)

    return _strip
