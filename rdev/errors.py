"""Error types raised by the rdev pipelines.

Every failure is fatal to the running pipeline; the CLI prints the error
together with its ``__cause__`` chain and exits non-zero.
"""


class RdevError(Exception):
    """Base class for all rdev errors."""


class ConfigError(RdevError):
    """Raised when the configuration is missing or invalid."""


class InvalidAddress(ConfigError):
    """Raised when a network address cannot be parsed."""


class InvalidPath(ConfigError):
    """Raised when the target path has no usable file name."""


class WatcherError(RdevError):
    """Raised when filesystem notification cannot be armed or polled."""


class TransportError(RdevError):
    """Raised on bind, accept or connect failures."""


class CodecError(RdevError):
    """Raised when a compressed stream is corrupt or truncated."""


class StripError(RdevError):
    """Raised when the debug-stripping tool fails to run."""


class ExecutionError(RdevError):
    """Raised when the received artifact cannot be launched."""
