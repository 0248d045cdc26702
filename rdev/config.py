"""Configuration for rdev.

Two layers:

* :class:`RunConfig`: what the command line selects (target file,
  endpoint, quiet flag). Immutable for the life of the process.
* :class:`Settings`: tunables read from an optional JSON config file,
  merged over :data:`DEFAULT_SETTINGS`.
"""

from __future__ import annotations

import ipaddress
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rdev.errors import ConfigError, InvalidAddress, InvalidPath
from rdev.platform_utils import get_config_path, get_log_path, get_temp_dir

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, Any] = {
    # ---- sender ----
    "strip_command": "strip",
    "temp_dir": "",  # blank = platform default (/tmp on POSIX)
    "compression_level": 1,  # zlib "fast"
    "chunk_size": 64 * 1024,
    # ---- receiver ----
    "atomic_replace": False,  # stage into .<name>.partial, rename when complete
    # ---- logging ----
    "log_level": "INFO",
    "log_file": "",  # blank = stderr only
    "max_log_size_mb": 10,
    "log_backup_count": 3,
}

_MIN_CHUNK_SIZE = 1024


@dataclass(frozen=True)
class Endpoint:
    """A TCP address: the runner to connect to, or the address to bind."""

    host: str
    port: int

    @classmethod
    def parse(cls, text: str) -> "Endpoint":
        """Parse ``HOST:PORT`` or ``[IPV6]:PORT``."""
        text = text.strip()
        if text.startswith("["):
            host, sep, rest = text[1:].partition("]")
            if not sep or not rest.startswith(":"):
                raise InvalidAddress(f"Failed to parse socket address '{text}'")
            port_text = rest[1:]
            try:
                ipaddress.IPv6Address(host)
            except ValueError as exc:
                raise InvalidAddress(f"Invalid IPv6 address '{host}'") from exc
        else:
            host, sep, port_text = text.rpartition(":")
            if not sep or not host or ":" in host:
                raise InvalidAddress(f"Failed to parse socket address '{text}'")
        try:
            port = int(port_text)
        except ValueError as exc:
            raise InvalidAddress(f"Invalid port '{port_text}' in '{text}'") from exc
        if not 0 <= port <= 65535:
            raise InvalidAddress(f"Port out of range in '{text}'")
        return cls(host=host, port=port)

    def as_tuple(self) -> tuple[str, int]:
        return (self.host, self.port)

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class RunConfig:
    """Validated command-line selection for one process invocation."""

    file: str
    endpoint: Endpoint
    quiet: bool = False


def split_target(file: str | Path) -> tuple[Path, str]:
    """Return ``(directory, name)`` for *file*.

    An empty directory part becomes ``.``. Raises :class:`InvalidPath` if
    the path has no file name (``""``, ``/``, ``..``).
    """
    path = Path(file)
    name = path.name
    if not name or name in (".", ".."):
        raise InvalidPath(f"Expected file name, got '{file}'")
    return path.parent, name


class Settings:
    """Tunables backed by an optional JSON file.

    Stored values are merged over :data:`DEFAULT_SETTINGS` so new keys
    always get their defaults.
    """

    def __init__(self, data: dict[str, Any] | None = None):
        self._data: dict[str, Any] = {**DEFAULT_SETTINGS, **(data or {})}

    @classmethod
    def load(cls, path: Path | None = None) -> "Settings":
        """Load settings from *path*, or from the platform default file.

        A missing default file simply yields the defaults; a missing file
        that was named explicitly is a :class:`ConfigError`.
        """
        explicit = path is not None
        path = path or get_config_path()
        if not path.exists():
            if explicit:
                raise ConfigError(f"Configuration file not found: {path}")
            return cls()
        try:
            with open(path, encoding="utf-8") as fh:
                stored = json.load(fh)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not read config (%s); using defaults.", exc)
            return cls()
        if not isinstance(stored, dict):
            logger.warning("Config root in %s is not an object; using defaults.", path)
            return cls()
        logger.debug("Configuration loaded from %s", path)
        return cls(stored)

    # ---- sender ----

    @property
    def strip_command(self) -> str:
        """Return the debug-stripping tool to invoke."""
        return str(self._data.get("strip_command") or "strip")

    @property
    def temp_dir(self) -> Path:
        """Return the directory the stripped copy is written to."""
        value = self._data.get("temp_dir")
        return Path(value) if value else get_temp_dir()

    @property
    def compression_level(self) -> int:
        """Return the zlib level, clamped to 0..9."""
        return min(9, max(0, int(self._data.get("compression_level", 1))))

    @property
    def chunk_size(self) -> int:
        """Return the stream-copy chunk size in bytes (minimum 1 KiB)."""
        return max(_MIN_CHUNK_SIZE, int(self._data.get("chunk_size", 64 * 1024)))

    # ---- receiver ----

    @property
    def atomic_replace(self) -> bool:
        """Return whether received files are staged and renamed into place."""
        return bool(self._data.get("atomic_replace", False))

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the logging level name."""
        return str(self._data.get("log_level", "INFO")).upper()

    @property
    def log_file(self) -> Path | None:
        """Return the rotating log file path, or None for stderr only.

        The value ``"default"`` selects the platform log location.
        """
        value = self._data.get("log_file")
        if not value:
            return None
        if value == "default":
            return get_log_path()
        return Path(value)

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return max(1, int(self._data.get("max_log_size_mb", 10)))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return max(0, int(self._data.get("log_backup_count", 3)))
