"""Pytest fixtures for rdev tests."""

import shutil
import socket
import threading
from pathlib import Path

import pytest

from rdev.config import Endpoint, Settings
from rdev.transport import Listener


class WatchingStopped(Exception):
    """Raised by FakeWatcher once its scripted batches run out."""


class FakeWatcher:
    """Stands in for WatchSession: replays scripted batches of names."""

    def __init__(self, batches, events=None):
        self._batches = list(batches)
        self.events = events if events is not None else []
        self.is_armed = False

    def start(self):
        if not self.is_armed:
            self.events.append("start")
        self.is_armed = True

    def stop(self):
        if self.is_armed:
            self.events.append("stop")
        self.is_armed = False

    def poll_changed_names(self, timeout=None):
        assert self.is_armed, "polled while disarmed"
        if not self._batches:
            raise WatchingStopped()
        return set(self._batches.pop(0))


def fake_strip(data: bytes) -> bytes:
    """What the fake stripper does to a file's bytes."""
    return data.replace(b"<debug>", b"")


class RecordingStripper:
    """Fake stripper: drops ``<debug>`` markers and records each call."""

    def __init__(self, events=None):
        self.calls = []
        self.events = events if events is not None else []

    def __call__(self, source: Path, output: Path):
        self.calls.append((source, output))
        self.events.append("strip")
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(fake_strip(source.read_bytes()))
        return open(output, "rb")


class RecordingExecutor:
    """Fake executor: remembers what it ran and the file state at that moment."""

    def __init__(self, returncode=0):
        self.returncode = returncode
        self.calls = []

    def __call__(self, path: Path) -> int:
        st = path.stat()
        self.calls.append((path, path.read_bytes(), st.st_mode))
        return self.returncode


class Collector:
    """Loopback receiver that stores the raw bytes of each connection."""

    def __init__(self):
        self._listener = Listener(Endpoint("127.0.0.1", 0))
        self.endpoint = self._listener.address
        self.payloads = []
        self.received = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        try:
            while True:
                conn, _ = self._listener.accept()
                with conn:
                    chunks = []
                    while data := conn.recv(65536):
                        chunks.append(data)
                self.payloads.append(b"".join(chunks))
                self.received.set()
        except Exception:
            return

    def close(self):
        self._listener.close()


@pytest.fixture
def tmp_watch_dir(tmp_path: Path) -> Path:
    """Temporary directory holding the watched artifact."""
    watch_dir = tmp_path / "watch"
    watch_dir.mkdir()
    return watch_dir


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings that stage stripped copies inside tmp_path."""
    return Settings({"temp_dir": str(tmp_path / "stage"), "chunk_size": 4096})


@pytest.fixture
def collector():
    c = Collector()
    yield c
    c.close()


@pytest.fixture
def closed_endpoint() -> Endpoint:
    """An address nothing is listening on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return Endpoint("127.0.0.1", port)


@pytest.fixture
def strip_tool():
    """Path to a real ``strip`` binary, or skip."""
    path = shutil.which("strip")
    if path is None:
        pytest.skip("strip not installed")
    return path
