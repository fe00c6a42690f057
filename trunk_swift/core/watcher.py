"""
Filesystem watcher thread for trunk-swift.

Uses the `watchfiles` library (a fast Rust-based file watcher built on
the OS notification APIs: FSEvents on macOS, inotify on Linux) to
subscribe recursively to every directory the watch globs can reach.

The watcher runs watchfiles.watch() on a QThread and emits each batch of
accepted changes through a Qt signal. Filtering happens inside the
watchfiles filter callback, so ignored paths never leave this thread.

watchfiles batches changes itself; its window is kept short here
(BATCH_MS) because the real debounce policy (a fixed window from the
first event) belongs to the supervisor.
"""

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from PySide6.QtCore import QThread, Signal
from watchfiles import Change, DefaultFilter, watch

from trunk_swift.core.config import WatchConfig
from trunk_swift.core.errors import ToolUnavailableError
from trunk_swift.core.globs import PathMatcher

logger = logging.getLogger(__name__)

# watchfiles' own grouping window and polling step, in milliseconds.
BATCH_MS = 50
STEP_MS = 10

# The Rust watcher returns control this often when idle, which is also how
# quickly the thread notices it is ready and how it reports readiness.
IDLE_TIMEOUT_MS = 100

# Seconds start_and_wait_ready() waits for the notifier to come up.
READY_TIMEOUT = 10.0


@dataclass(frozen=True)
class ChangeEvent:
    """One filesystem change: absolute path, arrival time, and added/modified/deleted."""
    path: str
    timestamp: float
    change: str = Change.modified.name


class GlobFilter(DefaultFilter):
    """
    watchfiles filter applying the watch/ignore globs.

    DefaultFilter already drops VCS directories, __pycache__, editor swap
    files and similar noise; on top of that a path must match an include
    glob and no ignore glob, relative to the project root.
    """

    def __init__(self, matcher: PathMatcher, root: Path):
        super().__init__()
        self._matcher = matcher
        self._root = root.resolve()

    def __call__(self, change: Change, path: str) -> bool:
        if not super().__call__(change, path):
            return False
        rel_path = self._matcher.relative_to_root(path, self._root)
        return rel_path is not None and self._matcher.matches(rel_path)


class WatchWorker(QThread):
    """
    Background thread turning filesystem notifications into ChangeEvent batches.

    Signals:
        changes_detected(object) — list[ChangeEvent], sorted by path, never empty.
        watcher_failed(str)      — The notifier died after start-up. Nothing is
                                   watched any more; the thread is exiting.
    """

    changes_detected = Signal(object)
    watcher_failed = Signal(str)

    def __init__(self, config: WatchConfig, matcher: PathMatcher):
        super().__init__()
        self._roots = matcher.watch_roots(config.root)
        self._filter = GlobFilter(matcher, config.root)
        self._force_polling = config.force_polling or None

        self._stop_event = threading.Event()
        self._ready = threading.Event()
        self._error: Exception | None = None

    @property
    def roots(self) -> list[Path]:
        return list(self._roots)

    def start_and_wait_ready(self, timeout: float = READY_TIMEOUT):
        """
        Start the thread and block until the notifier is subscribed.

        Raises:
            ToolUnavailableError: If the notification backend fails to
                                  initialize or does not come up in time.
        """
        self.start()
        if not self._ready.wait(timeout):
            self.stop()
            raise ToolUnavailableError(
                f"File watcher did not start within {timeout:.0f} seconds"
            )
        if self._error is not None:
            self.wait()
            raise ToolUnavailableError(
                f"Could not initialize file watcher: {self._error}"
            ) from self._error

    def stop(self):
        """Unsubscribe and wait for the thread to exit. Idempotent."""
        self._stop_event.set()
        self.wait()

    def run(self):
        """
        Consume watchfiles batches until stop() is called.

        This method runs on the BACKGROUND THREAD. The first yield, either
        a real batch or an idle timeout, proves the Rust watcher is
        subscribed, so it marks the worker ready.
        """
        logger.debug("Watching %s", ", ".join(str(r) for r in self._roots))
        try:
            for changes in watch(
                *self._roots,
                watch_filter=self._filter,
                debounce=BATCH_MS,
                step=STEP_MS,
                stop_event=self._stop_event,
                rust_timeout=IDLE_TIMEOUT_MS,
                yield_on_timeout=True,
                force_polling=self._force_polling,
            ):
                self._ready.set()
                if not changes:
                    continue

                now = time.time()
                events = sorted(
                    (ChangeEvent(path=path, timestamp=now, change=change.name)
                     for change, path in changes),
                    key=lambda e: e.path,
                )
                self.changes_detected.emit(events)

        except Exception as e:
            if not self._ready.is_set():
                # Raised to the caller by start_and_wait_ready().
                self._error = e
            elif not self._stop_event.is_set():
                self.watcher_failed.emit(f"File watcher stopped unexpectedly: {e}")
        finally:
            self._ready.set()
