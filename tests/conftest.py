"""Shared fixtures: Qt setup, a fake watcher, and watch-config builders."""

import logging
import os
import sys
import time

# Headless Qt for CI machines without a display.
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PySide6.QtCore import QObject, Signal

from trunk_swift.core.config import WatchConfig
from trunk_swift.core.supervisor import WatchSupervisor
from trunk_swift.core.watcher import ChangeEvent


def python_task(code: str) -> tuple[str, ...]:
    """argv running a Python snippet in a fresh interpreter."""
    return (sys.executable, "-c", code)


# A task that ignores SIGTERM, so only the forced kill can end it.
STUBBORN_TASK = (
    "import signal, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "time.sleep(30)\n"
)

SLEEPING_TASK = "import time; time.sleep(30)"


class FakeWatcher(QObject):
    """
    Stand-in for WatchWorker that emits events on demand.

    touch() applies the same include/ignore matcher the real watcher's
    filter uses, then emits synchronously on the calling thread.
    """

    changes_detected = Signal(object)
    watcher_failed = Signal(str)

    def __init__(self, config, matcher):
        super().__init__()
        self.config = config
        self.matcher = matcher
        self.started = False
        self.stopped = False

    def start_and_wait_ready(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def fail(self, message):
        self.watcher_failed.emit(message)

    def touch(self, *rel_paths):
        now = time.time()
        events = [
            ChangeEvent(path=str(self.config.root / p), timestamp=now)
            for p in rel_paths
            if self.matcher.matches(p)
        ]
        if events:
            self.changes_detected.emit(events)


class Recorder:
    """Collects supervisor signals for assertions."""

    def __init__(self, supervisor):
        self.started = []
        self.results = []
        supervisor.run_started.connect(lambda task: self.started.append(task))
        supervisor.run_finished.connect(lambda result: self.results.append(result))

    @property
    def outcomes(self):
        return [r.outcome for r in self.results]


@pytest.fixture
def fake_watchers():
    return []


@pytest.fixture
def supervisor(qtbot, fake_watchers):
    def factory(config, matcher):
        watcher = FakeWatcher(config, matcher)
        fake_watchers.append(watcher)
        return watcher

    sup = WatchSupervisor(watcher_factory=factory)
    yield sup
    sup.stop()


@pytest.fixture
def recorder(supervisor):
    return Recorder(supervisor)


@pytest.fixture
def watch_config(tmp_path):
    """Factory for WatchConfig rooted at tmp_path, watching src/**."""
    (tmp_path / "src").mkdir()

    def make(code="pass", **overrides):
        values = dict(
            paths=frozenset({"src/**"}),
            ignore=frozenset(),
            debounce_interval=0.1,
            grace_period=1.0,
            task_command=python_task(code),
            root=tmp_path,
        )
        values.update(overrides)
        return WatchConfig(**values)

    return make


@pytest.fixture
def reset_logging():
    """Remove handlers main() installs, so later tests see a clean logger."""
    yield
    logger = logging.getLogger("trunk_swift")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
