"""
Watch-and-run supervisor, the core of trunk-swift's watch mode.

The supervisor converts a stream of filesystem change notifications into
a serialized, debounced stream of task runs:

    1. The watcher thread emits batches of accepted ChangeEvents
       (ignored paths were already dropped inside the watcher).
    2. The first event with no open debounce window opens one
       (PendingTrigger) and arms a single-shot timer. Later events are
       absorbed into the open window. The window is fixed from its first
       event and never extended, which bounds the worst-case latency.
    3. When the timer fires the window closes. If no task is running, a
       new run starts immediately. If one is running, it is asked to
       cancel and a rerun is marked as owed.
    4. When a run finishes (success, failure or cancellation) its
       RunResult is emitted, and only then is the owed rerun (if any)
       started. So RunResult N always precedes the start of run N+1.

Concurrency model:
    All supervisor state (PendingTrigger, RunningTask, rerun-owed flag) is
    touched only on the thread running the Qt event loop. The watcher and
    task worker threads communicate exclusively through queued signals, so
    the "at most one RunningTask" invariant needs no lock: a trigger and a
    task completion can never interleave.

Usage:
    app = QCoreApplication(sys.argv)
    supervisor = WatchSupervisor()
    supervisor.run_finished.connect(on_result)
    supervisor.start(config)        # runs the task once right away
    app.exec()
    supervisor.stop()               # blocks until watcher and task are gone
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from PySide6.QtCore import QObject, QTimer, Signal

from trunk_swift.core.commands import RunOutcome
from trunk_swift.core.config import WatchConfig
from trunk_swift.core.errors import AlreadyRunningError, ConfigError
from trunk_swift.core.watcher import WatchWorker
from trunk_swift.core.worker import RunResult, TaskWorker

logger = logging.getLogger(__name__)

# How many changed paths to name in the "change detected" log line.
_MAX_PATHS_LOGGED = 3


@dataclass(frozen=True)
class PendingTrigger:
    """An open debounce window, opened by the event at opened_at."""
    opened_at: float


@dataclass(frozen=True)
class RunningTask:
    """
    The single task run currently in flight.

    worker doubles as the cancellation handle: worker.cancel() starts the
    terminate → grace period → kill escalation on the worker's thread.
    """
    worker: TaskWorker
    started_at: float

    @property
    def pid(self) -> int | None:
        return self.worker.pid


class WatchSupervisor(QObject):
    """
    Debounces file changes into task runs and supervises the task process.

    The watcher is created through watcher_factory(config, matcher), so a
    test can substitute any object with a changes_detected signal and
    start_and_wait_ready() / stop() methods.

    Signals:
        run_started(object)       — RunningTask, emitted as each run begins.
        run_finished(object)      — RunResult, emitted exactly once per run.
        changes_detected(object)  — list[ChangeEvent] accepted from the watcher.
        watch_failed(str)         — The watcher died; the supervisor has stopped itself.
    """

    run_started = Signal(object)
    run_finished = Signal(object)
    changes_detected = Signal(object)
    watch_failed = Signal(str)

    def __init__(self, watcher_factory=WatchWorker, parent: QObject | None = None):
        super().__init__(parent)
        self._watcher_factory = watcher_factory

        self._config: WatchConfig | None = None
        self._watcher = None
        self._started = False

        # The shared state cell. Only touched on this object's thread.
        self._pending: PendingTrigger | None = None
        self._running: RunningTask | None = None
        self._rerun_owed = False

        self._debounce_timer = QTimer(self)
        self._debounce_timer.setSingleShot(True)
        self._debounce_timer.timeout.connect(self._on_debounce_elapsed)

    # --- State inspection ---

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def config(self) -> WatchConfig | None:
        return self._config

    @property
    def pending_trigger(self) -> PendingTrigger | None:
        return self._pending

    @property
    def running_task(self) -> RunningTask | None:
        return self._running

    @property
    def rerun_owed(self) -> bool:
        return self._rerun_owed

    # --- Public contract ---

    def start(self, config: WatchConfig) -> "WatchSupervisor":
        """
        Begin monitoring and trigger the initial task run.

        Args:
            config: Immutable watch configuration.

        Returns:
            self, the handle to pass to stop().

        Raises:
            AlreadyRunningError:  If this supervisor is already started.
            ConfigError:          Empty paths, invalid glob, bad durations,
                                  or a root directory that does not exist.
            ToolUnavailableError: If the filesystem notifier cannot start.
        """
        if self._started:
            raise AlreadyRunningError("Watch supervisor is already running")

        matcher = config.validate()
        if not Path(config.root).is_dir():
            raise ConfigError(f"Watch root is not a directory: {config.root}")

        watcher = self._watcher_factory(config, matcher)
        watcher.changes_detected.connect(self._on_changes)
        watcher.watcher_failed.connect(self._on_watcher_failed)
        watcher.start_and_wait_ready()

        self._config = config
        self._watcher = watcher
        self._pending = None
        self._rerun_owed = False
        self._started = True
        self._debounce_timer.setInterval(int(config.debounce_interval * 1000))

        logger.info("Watching for changes in: %s", " ".join(sorted(config.paths)))

        # Parity with "build once before watching".
        self._start_task()
        return self

    def stop(self):
        """
        Stop monitoring and terminate any in-flight task.

        Blocks until the watcher thread has exited and the task process has
        been reaped (after at most the grace period plus a forced kill). The
        cancelled run's RunResult is emitted before this returns. Idempotent.
        """
        if not self._started:
            return

        self._started = False
        self._debounce_timer.stop()
        self._pending = None
        self._rerun_owed = False

        watcher, self._watcher = self._watcher, None
        watcher.stop()

        running, self._running = self._running, None
        if running is not None:
            logger.info("Stopping running task...")
            running.worker.cancel()
            running.worker.wait()
            self._report(running.worker.result)

        logger.info("Stopped watching")

    # --- Event handling (always on this object's thread) ---

    def _on_watcher_failed(self, message: str):
        if not self._started:
            return
        logger.error("%s", message)
        self.stop()
        self.watch_failed.emit(message)

    def _on_changes(self, events):
        if not self._started or not events:
            return

        self.changes_detected.emit(events)

        if self._pending is not None:
            # Absorbed into the open window.
            return

        self._pending = PendingTrigger(opened_at=min(e.timestamp for e in events))
        self._debounce_timer.start()

        names = [Path(e.path).name for e in events[:_MAX_PATHS_LOGGED]]
        more = len(events) - len(names)
        suffix = f" (+{more} more)" if more > 0 else ""
        logger.info("Change detected: %s%s", ", ".join(names), suffix)

    def _on_debounce_elapsed(self):
        if not self._started:
            return

        self._pending = None

        if self._running is not None:
            self._rerun_owed = True
            if not self._running.worker.cancel_requested:
                logger.info("Changes arrived during a run, cancelling it...")
                self._running.worker.cancel()
            return

        self._start_task()

    def _start_task(self):
        worker = TaskWorker(
            self._config.task_command,
            cwd=self._config.root,
            grace_period=self._config.grace_period,
        )
        # Emitted from the worker thread; queued onto this object's thread.
        worker.run_finished.connect(self._on_worker_finished)

        running = RunningTask(worker=worker, started_at=time.time())
        self._running = running
        self.run_started.emit(running)
        worker.start()

    def _on_worker_finished(self, result: RunResult):
        running = self._running
        if running is None or running.worker.result is not result:
            # Already reported by stop().
            return

        self._running = None
        # run() returns right after emitting; make sure the thread is gone.
        running.worker.wait()
        self._report(result)

        if self._rerun_owed and self._started:
            self._rerun_owed = False
            self._start_task()

    def _report(self, result: RunResult | None):
        if result is None:
            return

        if result.outcome == RunOutcome.SUCCESS:
            logger.info("Task finished in %.1fs", result.duration)
        elif result.outcome == RunOutcome.FAILURE:
            logger.error("%s; still watching for changes", result.error)
        else:
            logger.info("Task cancelled after %.1fs", result.duration)

        self.run_finished.emit(result)


def start(config: WatchConfig, watcher_factory=WatchWorker) -> WatchSupervisor:
    """Create a supervisor and start it. Returns the handle for stop()."""
    return WatchSupervisor(watcher_factory).start(config)


def stop(handle: WatchSupervisor):
    """Stop a supervisor returned by start(). Idempotent."""
    handle.stop()
