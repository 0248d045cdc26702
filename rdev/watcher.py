"""File system watcher for rdev.

Uses the watchdog library to monitor the directory holding the build
artifact. Events are reduced to entry names and queued; the sender pulls
them with a blocking :meth:`WatchSession.poll_changed_names`.

On Linux the inotify watch is armed for exactly three kinds of change:
a writable handle closed (``IN_CLOSE_WRITE``), an entry moved into the
directory from anywhere (``IN_MOVED_TO``) and an attribute change,
timestamps included (``IN_ATTRIB``). Plain creates and partial writes are
never seen, so every event that reaches the handler is a change to report.
"""

from __future__ import annotations

import logging
import os
import queue
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchdog.events import (
    FileClosedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from rdev.errors import WatcherError
from rdev.platform_utils import IS_LINUX

if IS_LINUX:
    from watchdog.observers.api import DEFAULT_OBSERVER_TIMEOUT, BaseObserver
    from watchdog.observers.inotify import InotifyEmitter
    from watchdog.observers.inotify_c import InotifyConstants

logger = logging.getLogger(__name__)


if IS_LINUX:
    ARTIFACT_EVENT_MASK = (
        InotifyConstants.IN_CLOSE_WRITE | InotifyConstants.IN_MOVED_TO | InotifyConstants.IN_ATTRIB
    )

    class ArtifactEmitter(InotifyEmitter):
        """Inotify emitter armed with :data:`ARTIFACT_EVENT_MASK` only.

        watchdog's translation still applies: ``IN_MOVED_TO`` without a
        matching ``IN_MOVED_FROM`` arrives as a created event and
        ``IN_ATTRIB`` as a modified event.
        """

        def get_event_mask_from_filter(self) -> int:
            return ARTIFACT_EVENT_MASK

    class ArtifactObserver(BaseObserver):
        """Observer that schedules :class:`ArtifactEmitter` watches."""

        def __init__(self, *, timeout: float = DEFAULT_OBSERVER_TIMEOUT) -> None:
            super().__init__(ArtifactEmitter, timeout=timeout)

    DEFAULT_OBSERVER: Callable[[], Any] = ArtifactObserver
else:
    # Other backends report whatever they can; every file event counts.
    DEFAULT_OBSERVER = Observer


class _ChangeHandler(FileSystemEventHandler):
    """Watchdog handler that queues the names of changed entries."""

    def __init__(self, folder: str, names: queue.Queue):
        super().__init__()
        self._folder = folder
        self._names = names

    def _emit(self, path: bytes | str) -> None:
        name = os.path.basename(os.fsdecode(path))
        logger.debug("Change in %s: %s", self._folder, name)
        self._names.put(name)

    def on_closed(self, event: FileClosedEvent) -> None:  # type: ignore[override]
        """Handle a file closed after writing."""
        if not event.is_directory:
            self._emit(event.src_path)

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        """Handle an entry moved in from outside the folder."""
        if not event.is_directory:
            self._emit(event.src_path)

    def on_moved(self, event: FileMovedEvent) -> None:  # type: ignore[override]
        """Handle an entry renamed within the folder."""
        dest = os.fsdecode(event.dest_path)
        if os.path.dirname(os.path.abspath(dest)) == self._folder:
            self._emit(dest)

    def on_modified(self, event: FileModifiedEvent) -> None:  # type: ignore[override]
        """Handle an attribute change."""
        if not event.is_directory:
            self._emit(event.src_path)


class WatchSession:
    """Arms and disarms change notification for one directory.

    Usage:
        session = WatchSession(Path("build"))
        session.start()
        names = session.poll_changed_names()
        session.stop()

    At most one observer is active at a time; ``start`` and ``stop`` are
    both idempotent.

    Parameters
    ----------
    folder : Path
        The directory to watch (non-recursively).
    observer_factory : callable
        Builds the watchdog observer. Defaults to :class:`ArtifactObserver`
        on Linux and the platform observer elsewhere.
    """

    def __init__(self, folder: Path, observer_factory: Callable[[], Any] | None = None):
        self.folder = Path(folder)
        self._observer_factory = observer_factory or DEFAULT_OBSERVER
        self._names: queue.Queue[str] = queue.Queue()
        self._observer: Any | None = None

    # ---- lifecycle ----

    def start(self) -> None:
        """Arm notification on the folder. No-op if already armed."""
        if self._observer is not None:
            return
        folder = os.path.abspath(self.folder)
        if not os.path.isdir(folder):
            raise WatcherError(f"Watch folder does not exist: {self.folder}")

        handler = _ChangeHandler(folder, self._names)
        observer = self._observer_factory()
        try:
            observer.schedule(handler, folder, recursive=False)
            observer.start()
        except OSError as exc:
            raise WatcherError(f"Cannot watch '{self.folder}': {exc}") from exc
        self._observer = observer
        logger.debug("Watching '%s'", self.folder)

    def stop(self) -> None:
        """Disarm and release the observer. No-op if not armed."""
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5)
        # Anything queued but not yet polled belongs to the disarmed window.
        self._drain()
        logger.debug("Stopped watching '%s'", self.folder)

    @property
    def is_armed(self) -> bool:
        """Return whether an observer is currently active."""
        return self._observer is not None

    def __enter__(self) -> "WatchSession":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # ---- polling ----

    def poll_changed_names(self, timeout: float | None = None) -> set[str]:
        """Block until something changes, then return the changed names.

        Returns every name queued at that point, so a burst of events
        comes back as one set. With a *timeout*, an empty set is returned
        if nothing arrived in time.
        """
        if self._observer is None:
            raise WatcherError("Watcher is not armed")
        try:
            first = self._names.get(timeout=timeout)
        except queue.Empty:
            return set()
        return {first} | self._drain()

    def _drain(self) -> set[str]:
        names: set[str] = set()
        while True:
            try:
                names.add(self._names.get_nowait())
            except queue.Empty:
                return names
