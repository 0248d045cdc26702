"""TCP transport for rdev.

One connection carries one file. There is no framing: the sender shuts
down its write side when done and the receiver reads until the payload's
own end marker.
"""

from __future__ import annotations

import logging
import socket
from typing import BinaryIO

from rdev.codec import DEFAULT_CHUNK_SIZE
from rdev.config import Endpoint
from rdev.errors import TransportError

logger = logging.getLogger(__name__)


def connect(endpoint: Endpoint) -> socket.socket:
    """Open an outbound connection to *endpoint*."""
    try:
        return socket.create_connection(endpoint.as_tuple())
    except OSError as exc:
        raise TransportError(f"Could not connect to {endpoint}") from exc


def copy_stream(src: BinaryIO, dst: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Copy *src* into *dst* chunk by chunk; return the number of bytes."""
    total = 0
    while chunk := src.read(chunk_size):
        dst.write(chunk)
        total += len(chunk)
    return total


class Listener:
    """A bound TCP listener that hands out one connection at a time.

    Binds on construction so address errors surface before the accept
    loop starts.
    """

    def __init__(self, endpoint: Endpoint, backlog: int = 5):
        self.endpoint = endpoint
        family = socket.AF_INET6 if ":" in endpoint.host else socket.AF_INET
        try:
            self._sock = socket.create_server(
                endpoint.as_tuple(), family=family, backlog=backlog, reuse_port=False
            )
        except OSError as exc:
            raise TransportError(f"Could not listen on {endpoint}") from exc

    @property
    def address(self) -> Endpoint:
        """Return the address actually bound (resolves port 0)."""
        host, port = self._sock.getsockname()[:2]
        return Endpoint(host=host, port=port)

    def accept(self) -> tuple[socket.socket, str]:
        """Block until a sender connects; return the socket and peer."""
        try:
            conn, peer = self._sock.accept()
        except OSError as exc:
            raise TransportError(f"Accept failed on {self.endpoint}") from exc
        return conn, f"{peer[0]}:{peer[1]}"

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> "Listener":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
