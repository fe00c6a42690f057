"""
Background task worker for trunk-swift.

This module provides the QThread subclass that runs one external task
command (normally the project build) on a background thread, so the
supervisor's event loop stays free to receive file-change notifications
while a build is in progress.

Communication with the supervisor is handled entirely through Qt signals.
The worker object lives on the supervisor's thread but run() executes on
its own thread, so signal emissions from run() are queued and the
supervisor's slots always execute on the supervisor's thread:
    - The worker never touches supervisor state directly
    - The only cross-thread call into the worker is cancel(), which just
      sets a threading.Event

Process lifecycle:
    - The command is spawned in its own process group (POSIX) so that
      cancellation reaches xcodebuild's child processes too.
    - stdout/stderr are inherited, never captured: output reaches the
      terminal live, line by line, as the tool writes it.
    - cancel() asks the worker thread to send SIGTERM, wait the grace
      period, then SIGKILL. The thread always reaps the process before
      run() returns, so no child outlives the worker.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from PySide6.QtCore import QThread, Signal

from trunk_swift.core.commands import RunOutcome
from trunk_swift.core.errors import CancellationError, TaskExecutionError

logger = logging.getLogger(__name__)

# How often the worker checks for cancellation while the task runs.
POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class RunResult:
    """
    Outcome of one completed task run.

    exit_status is None when the command could not be spawned, or when the
    run was cancelled before the process started. error carries the
    TaskExecutionError for failed runs and is None otherwise.
    """
    started_at: float
    finished_at: float
    exit_status: int | None
    outcome: str
    error: TaskExecutionError | None = None

    @property
    def duration(self) -> float:
        return self.finished_at - self.started_at


class TaskWorker(QThread):
    """
    Runs one task command to completion (or cancellation) on a background thread.

    A worker is single-use: the supervisor creates a fresh TaskWorker for
    every run, so "a worker exists and is not finished" is exactly the
    RunningTask state.

    Signals:
        process_started(int)  — Emitted with the child PID once the process is spawned.
        run_finished(object)  — Emitted exactly once with the RunResult.
    """

    process_started = Signal(int)
    run_finished = Signal(object)

    def __init__(self, command, cwd: Path | None = None, grace_period: float = 2.0):
        super().__init__()
        self._command = list(command)
        self._cwd = cwd
        self._grace_period = grace_period

        # Set from the supervisor's thread, read from the worker thread.
        self._cancel_event = threading.Event()

        self.pid: int | None = None
        self.result: RunResult | None = None

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self):
        """
        Request cancellation. Thread-safe and idempotent.

        Returns immediately; the worker thread performs the terminate →
        grace period → kill escalation and emits run_finished when the
        process is gone.
        """
        self._cancel_event.set()

    def run(self):
        """
        Spawn the command, wait for it, and report the result.

        This method runs on the BACKGROUND THREAD. The RunResult is stored
        on self.result before run_finished is emitted, so a caller that
        wait()s on the thread can read it without the event loop.
        """
        started_at = time.time()
        exit_status = None
        error = None

        try:
            if self._cancel_event.is_set():
                raise CancellationError("Task cancelled before it started")

            process = self._spawn()
            self.pid = process.pid
            self.process_started.emit(process.pid)

            exit_status = self._wait_for_exit(process)
            if exit_status == 0:
                outcome = RunOutcome.SUCCESS
            else:
                outcome = RunOutcome.FAILURE
                error = TaskExecutionError(
                    f"Task exited with status {exit_status}", exit_status
                )

        except CancellationError as e:
            logger.debug("%s", e)
            outcome = RunOutcome.CANCELLED

        except TaskExecutionError as e:
            outcome = RunOutcome.FAILURE
            error = e

        except Exception as e:
            # Every run ends in exactly one RunResult, even a crashed one.
            logger.exception("Task worker crashed")
            outcome = RunOutcome.FAILURE
            error = TaskExecutionError(f"Task worker crashed: {e}")

        self.result = RunResult(
            started_at=started_at,
            finished_at=time.time(),
            exit_status=exit_status,
            outcome=outcome,
            error=error,
        )
        self.run_finished.emit(self.result)

    def _spawn(self) -> subprocess.Popen:
        """
        Start the task process with inherited stdout/stderr.

        Raises:
            TaskExecutionError: If the executable cannot be started.
        """
        kwargs = {}
        if os.name == "posix":
            kwargs["start_new_session"] = True
        else:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

        logger.debug("Starting task: %s", " ".join(self._command))
        try:
            return subprocess.Popen(self._command, cwd=self._cwd, **kwargs)
        except (OSError, ValueError) as e:
            # ValueError: an argument with an embedded NUL byte.
            raise TaskExecutionError(f"Could not start task '{self._command[0]}': {e}")

    def _wait_for_exit(self, process: subprocess.Popen) -> int:
        """
        Block until the process exits or cancellation is requested.

        Raises:
            CancellationError: After the cancelled process has been reaped.
        """
        while process.poll() is None:
            if self._cancel_event.wait(POLL_INTERVAL):
                self._terminate(process)
                raise CancellationError(f"Task (pid {process.pid}) cancelled")
        return process.returncode

    def _terminate(self, process: subprocess.Popen):
        """SIGTERM, wait up to the grace period, then SIGKILL; always reaps."""
        if process.poll() is None:
            self._signal(process, signal.SIGTERM)
            try:
                process.wait(timeout=self._grace_period)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Task (pid %d) did not exit within %.1fs, killing it",
                    process.pid, self._grace_period,
                )
                self._signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
                process.wait()

        # Children that ignored SIGTERM would otherwise outlive their parent.
        if os.name == "posix":
            self._signal(process, signal.SIGKILL)

    def _signal(self, process: subprocess.Popen, sig: int):
        if os.name != "posix":
            if process.poll() is None:
                process.terminate()
            return
        try:
            os.killpg(process.pid, sig)
        except (ProcessLookupError, PermissionError):
            # The group is already gone.
            pass
