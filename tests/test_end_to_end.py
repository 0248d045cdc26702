"""Sender and receiver talking over loopback."""

import stat
import threading
import time
from pathlib import Path

import pytest

from conftest import RecordingExecutor, RecordingStripper, fake_strip
from rdev.config import Endpoint, RunConfig, Settings
from rdev.platform_utils import IS_LINUX
from rdev.receiver import ReceiverPipeline
from rdev.sender import SenderPipeline, SenderState
from rdev.watcher import WatchSession


class ReceiverDone(Exception):
    """Ends the receiver loop once the expected run happened."""


class StoppingExecutor(RecordingExecutor):
    def __init__(self):
        super().__init__()
        self.ran = threading.Event()

    def __call__(self, path: Path) -> int:
        super().__call__(path)
        self.ran.set()
        raise ReceiverDone()


def _run_quietly(target, expected):
    def _target():
        try:
            target()
        except expected:
            pass

    thread = threading.Thread(target=_target, daemon=True)
    thread.start()
    return thread


@pytest.mark.skipif(not IS_LINUX, reason="closed-after-write events need inotify")
def test_build_and_run_over_loopback(tmp_path: Path) -> None:
    build_dir = tmp_path / "build"
    run_dir = tmp_path / "device"
    build_dir.mkdir()
    run_dir.mkdir()
    (build_dir / "artifact").write_bytes(b"old build")
    settings = Settings({"temp_dir": str(tmp_path / "stage")})

    executor = StoppingExecutor()
    receiver = ReceiverPipeline(
        RunConfig(str(run_dir / "artifact"), Endpoint("127.0.0.1", 0)),
        settings,
        executor=executor,
    )
    receiver.bind()
    receiver_thread = _run_quietly(receiver.run, ReceiverDone)

    session = WatchSession(build_dir)
    sender = SenderPipeline(
        RunConfig(str(build_dir / "artifact"), receiver.address),
        settings,
        stripper=RecordingStripper(),
        watcher=session,
    )
    # The sender never returns on its own; the daemon thread is left blocked.
    _run_quietly(sender.run, Exception)

    deadline = time.monotonic() + 5
    while not (session.is_armed and sender.state is SenderState.WATCHING):
        assert time.monotonic() < deadline, "sender never started watching"
        time.sleep(0.05)

    new_build = b"\x7fELF" + b"<debug>" * 100 + b"fresh code" * 200
    with open(build_dir / "artifact", "wb") as fh:
        fh.write(new_build)

    try:
        assert executor.ran.wait(10), "artifact was never run"
        receiver_thread.join(5)
    finally:
        session.stop()

    dest = run_dir / "artifact"
    assert dest.read_bytes() == fake_strip(new_build)
    assert dest.stat().st_mode & stat.S_IXUSR
    assert len(executor.calls) == 1
    assert executor.calls[0][1] == fake_strip(new_build)
