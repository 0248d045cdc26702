"""
Receiver ("run") pipeline.

Accepts one transfer at a time, decompresses it straight into the
destination file, marks it executable and runs it to completion before
accepting the next connection.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from rdev.codec import DecompressingReader
from rdev.config import Endpoint, RunConfig, Settings, split_target
from rdev.errors import ExecutionError, TransportError
from rdev.platform_utils import EXECUTABLE_MODE, make_executable
from rdev.transport import Listener, copy_stream

logger = logging.getLogger(__name__)

Executor = Callable[[Path], int]


def run_artifact(path: Path) -> int:
    """Run *path* as a child process and wait; return its exit status."""
    # Absolute so a bare name is never looked up on $PATH.
    exe = os.path.abspath(path)
    try:
        completed = subprocess.run([exe])
    except OSError as exc:
        raise ExecutionError(f"Could not run {exe}") from exc
    return completed.returncode


class ReceiverState(str, Enum):
    """Where the receiver loop currently is."""

    IDLE = "idle"
    ACCEPTING = "accepting"
    DECODING = "decoding"
    PERSISTING = "persisting"
    EXECUTING = "executing"
    FAILED = "failed"


@dataclass
class RunRecord:
    """Record of one received and executed artifact."""
    destination: str
    peer: str = ""
    received_bytes: int = 0
    size_bytes: int = 0
    returncode: int | None = None
    started: float = 0.0
    finished: float = 0.0

    @property
    def duration(self) -> float:
        if self.finished and self.started:
            return self.finished - self.started
        return 0.0


@dataclass
class ReceiverStats:
    """Aggregated receive/run statistics."""
    total_runs: int = 0
    total_failed_runs: int = 0
    total_bytes: int = 0
    history: list[RunRecord] = field(default_factory=list)

    def record(self, rec: RunRecord) -> None:
        self.total_runs += 1
        self.total_bytes += rec.size_bytes
        if rec.returncode:
            self.total_failed_runs += 1
        self.history.append(rec)
        # Keep last 100 records
        if len(self.history) > 100:
            self.history = self.history[-100:]


class ReceiverPipeline:
    """
    Listens for the sender, saves each received file and runs it.

    Parameters
    ----------
    config : RunConfig
        Destination file name and the address to listen on.
    settings : Settings, optional
        Codec chunk size and the atomic-replace switch.
    executor : callable
        Runs the saved artifact and returns its exit status.
    listener_factory : callable
        Binds a :class:`Listener` for an :class:`Endpoint`.
    on_run_complete : callable, optional
        Callback invoked after each run with the RunRecord.
    """

    def __init__(
        self,
        config: RunConfig,
        settings: Settings | None = None,
        executor: Executor = run_artifact,
        listener_factory: Callable[[Endpoint], Listener] = Listener,
        on_run_complete: Callable[[RunRecord], None] | None = None,
    ):
        self.config = config
        self.settings = settings or Settings()
        self._executor = executor
        self._listener_factory = listener_factory
        self._on_run_complete = on_run_complete
        self._listener: Listener | None = None
        self.state = ReceiverState.IDLE
        self.stats = ReceiverStats()

    @property
    def destination(self) -> Path:
        """Path the received file is saved to."""
        directory, name = split_target(self.config.file)
        return directory / name

    @property
    def address(self) -> Endpoint | None:
        """Bound address once :meth:`bind` has run."""
        return self._listener.address if self._listener else None

    def bind(self) -> None:
        """Bind the listener. No-op if already bound."""
        if self._listener is None:
            self._listener = self._listener_factory(self.config.endpoint)

    def close(self) -> None:
        """Release the listener."""
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    def run(self) -> None:
        """Accept, save and run files until an error occurs, then re-raise it."""
        try:
            destination = self.destination
            self.bind()
            logger.info("Listening for connections on %s...", self.address)
            while True:
                self.serve_one(destination)
        except Exception as exc:
            self.state = ReceiverState.FAILED
            logger.error("Receiver stopped: %s", exc)
            raise
        finally:
            self.close()

    def serve_one(self, destination: Path) -> RunRecord:
        """Handle exactly one connection: receive, save, run."""
        if self._listener is None:
            raise TransportError("Receiver is not listening; call bind() first")
        self.state = ReceiverState.ACCEPTING
        conn, peer = self._listener.accept()
        rec = RunRecord(destination=str(destination), peer=peer, started=time.time())
        logger.info("Got file from %s...", peer)

        with conn, conn.makefile("rb") as stream:
            self.state = ReceiverState.DECODING
            decoder = DecompressingReader(stream, chunk_size=self.settings.chunk_size)
            self.state = ReceiverState.PERSISTING
            logger.info("Decompressing...")
            rec.size_bytes = self._persist(decoder, destination)
            rec.received_bytes = decoder.bytes_in
            if decoder.trailing_bytes:
                logger.warning(
                    "Ignoring %d bytes after end of stream", decoder.trailing_bytes
                )

        self.state = ReceiverState.EXECUTING
        logger.info("Running %s...", destination)
        rec.returncode = self._executor(destination)
        rec.finished = time.time()
        if rec.returncode != 0:
            logger.warning("%s exited with status %s", destination, rec.returncode)
        else:
            logger.info("%s finished in %.2fs", destination, rec.duration)

        self.stats.record(rec)
        if self._on_run_complete:
            try:
                self._on_run_complete(rec)
            except Exception:
                logger.exception("Error in on_run_complete callback")
        return rec

    def _persist(self, decoder: BinaryIO, destination: Path) -> int:
        """Write the decoded stream to *destination*; return its size.

        The file is closed and synced before returning so the executor
        never races the final write.
        """
        atomic = self.settings.atomic_replace
        target = destination.with_name(f".{destination.name}.partial") if atomic else destination
        fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, EXECUTABLE_MODE)
        try:
            with os.fdopen(fd, "wb") as fh:
                make_executable(fh.fileno())
                size = copy_stream(decoder, fh, self.settings.chunk_size)
                fh.flush()
                os.fsync(fh.fileno())
        except BaseException:
            if atomic:
                target.unlink(missing_ok=True)
            raise
        if atomic:
            os.replace(target, destination)
        return size
