"""
Sender ("build") pipeline.

Guards one file: every time it is written, the file is stripped of debug
information, compressed and streamed to the runner over a fresh TCP
connection. The pipeline is a single-threaded loop that stops at the first
error; restarting is left to whoever launched it.
"""

from __future__ import annotations

import logging
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from rdev.codec import CompressingReader
from rdev.config import Endpoint, RunConfig, Settings, split_target
from rdev.strip import Stripper, make_stripper
from rdev.transport import connect, copy_stream
from rdev.watcher import WatchSession

logger = logging.getLogger(__name__)


class SenderState(str, Enum):
    """Where the sender loop currently is."""

    IDLE = "idle"
    WATCHING = "watching"
    STRIPPING = "stripping"
    SENDING = "sending"
    FAILED = "failed"


@dataclass
class TransferRecord:
    """Record of a single file transfer."""
    source: str
    stripped: str
    size_bytes: int = 0
    stripped_bytes: int = 0
    sent_bytes: int = 0
    started: float = 0.0
    finished: float = 0.0

    @property
    def duration(self) -> float:
        if self.finished and self.started:
            return self.finished - self.started
        return 0.0


@dataclass
class SenderStats:
    """Aggregated transfer statistics."""
    total_transfers: int = 0
    total_bytes_sent: int = 0
    history: list[TransferRecord] = field(default_factory=list)

    def record(self, rec: TransferRecord) -> None:
        self.total_transfers += 1
        self.total_bytes_sent += rec.sent_bytes
        self.history.append(rec)
        # Keep last 100 records
        if len(self.history) > 100:
            self.history = self.history[-100:]


class SenderPipeline:
    """
    Watches the configured file and pushes each new version to the runner.

    Parameters
    ----------
    config : RunConfig
        Target file and the runner's address.
    settings : Settings, optional
        Strip command, temp directory and codec tunables.
    stripper : callable, optional
        ``(source, output) -> reader``; defaults to the configured strip tool.
    connector : callable
        Opens the outbound connection for an :class:`Endpoint`.
    watcher : WatchSession, optional
        Injected watch session; built for the file's directory otherwise.
    on_transfer_complete : callable, optional
        Callback invoked after each transfer with the TransferRecord.
    """

    def __init__(
        self,
        config: RunConfig,
        settings: Settings | None = None,
        stripper: Stripper | None = None,
        connector: Callable[[Endpoint], socket.socket] = connect,
        watcher: WatchSession | None = None,
        on_transfer_complete: Callable[[TransferRecord], None] | None = None,
    ):
        self.config = config
        self.settings = settings or Settings()
        self._stripper = stripper or make_stripper(self.settings.strip_command)
        self._connector = connector
        self._watcher = watcher
        self._on_transfer_complete = on_transfer_complete
        self.state = SenderState.IDLE
        self.stats = SenderStats()

    def run(self) -> None:
        """Watch and send until an error occurs, then re-raise it."""
        try:
            directory, name = split_target(self.config.file)
            if self._watcher is None:
                self._watcher = WatchSession(directory)
            watcher = self._watcher

            self.state = SenderState.WATCHING
            watcher.start()
            logger.info("Watching %s for changes...", self.config.file)
            while True:
                if name not in watcher.poll_changed_names():
                    continue
                # Stop watching while stripping so our own access to the
                # file doesn't trigger another transfer.
                watcher.stop()
                self.transfer(Path(self.config.file), name)
                self.state = SenderState.WATCHING
                watcher.start()
        except Exception as exc:
            self.state = SenderState.FAILED
            logger.error("Sender stopped: %s", exc)
            raise
        finally:
            if self._watcher is not None:
                self._watcher.stop()

    def transfer(self, source: Path, name: str) -> TransferRecord:
        """Strip, compress and send *source* once."""
        rec = TransferRecord(
            source=str(source),
            stripped=str(self.settings.temp_dir / name),
            started=time.time(),
        )
        rec.size_bytes = source.stat().st_size

        self.state = SenderState.STRIPPING
        with self._stripper(source, Path(rec.stripped)) as stripped:
            # Only connect once the stripped copy is complete.
            self.state = SenderState.SENDING
            encoder = CompressingReader(
                stripped,
                level=self.settings.compression_level,
                chunk_size=self.settings.chunk_size,
            )
            with self._connector(self.config.endpoint) as sock:
                logger.info("Sending file...")
                with sock.makefile("wb") as out:
                    copy_stream(encoder, out, self.settings.chunk_size)
                    out.flush()
                sock.shutdown(socket.SHUT_WR)

        rec.stripped_bytes = encoder.bytes_in
        rec.sent_bytes = encoder.bytes_out
        rec.finished = time.time()
        logger.info(
            "Done! %d bytes (%d stripped, %d on the wire) in %.2fs",
            rec.size_bytes, rec.stripped_bytes, rec.sent_bytes, rec.duration,
        )
        self.stats.record(rec)
        if self._on_transfer_complete:
            try:
                self._on_transfer_complete(rec)
            except Exception:
                logger.exception("Error in on_transfer_complete callback")
        return rec
