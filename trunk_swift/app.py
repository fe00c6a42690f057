"""
Command handlers for trunk-swift.

TrunkSwiftApp is the orchestration hub: each CLI subcommand maps to one
method here, and each method sequences calls to the Toolchain (opaque
xcodebuild / simctl invocations) and, for the long-running commands, the
WatchSupervisor.

    build — clean (failure tolerated), then build
    watch — supervisor with the build as its task; runs until Ctrl+C
    serve — boot + open a simulator, then watch
    run   — build, then boot + open a simulator
    clean — xcodebuild clean and DerivedData removal
    check — toolchain, project file, and scheme checks

Handlers return the process exit code. Fatal conditions (missing tools,
bad config, unknown simulator) are raised as TrunkError subclasses and
turned into an exit code by the entry point.
"""

import contextlib
import logging
import signal
import sys

from PySide6.QtCore import QCoreApplication, QTimer

from trunk_swift import __version__
from trunk_swift.core.commands import (
    COMMAND_DESCRIPTIONS,
    COMMAND_ORDER,
    PRECHECKED_COMMANDS,
    Command,
)
from trunk_swift.core.config import ProjectConfig
from trunk_swift.core.errors import NotFoundError
from trunk_swift.core.supervisor import WatchSupervisor
from trunk_swift.core.toolchain import Toolchain, XcodeToolchain, filter_devices
from trunk_swift.logging_ import status

logger = logging.getLogger(__name__)

PROG = "trunk-swift"

# Interval at which the Qt event loop hands control back to Python so
# SIGINT/SIGTERM handlers get a chance to run.
_SIGNAL_POLL_MS = 200


def help_text(prog: str = PROG) -> str:
    """Usage text listing every command in COMMAND_ORDER."""
    width = max(len(c) for c in COMMAND_ORDER)
    lines = [
        f"Trunk-like tool for Swift iOS development (v{__version__})",
        "",
        f"Usage: {prog} [--config PATH] [--verbose] <COMMAND>",
        "",
        "Commands:",
    ]
    lines += [f"  {c.ljust(width)}  {COMMAND_DESCRIPTIONS[c]}" for c in COMMAND_ORDER]
    lines += [
        "",
        "Options:",
        "  --config PATH  Config file (default: ./trunk.toml)",
        "  --verbose      Show debug output",
        "",
        "Examples:",
        f"  {prog} build",
        f"  {prog} watch",
        f"  {prog} serve",
    ]
    return "\n".join(lines)


@contextlib.contextmanager
def _quit_on_signals(app: QCoreApplication):
    """
    Make Ctrl+C and SIGTERM end app.exec() cleanly.

    Python only runs signal handlers when the interpreter gets control, and
    the Qt event loop runs in C++; the idle timer below wakes it regularly.
    """
    signals = [signal.SIGINT, signal.SIGTERM]
    previous = {sig: signal.getsignal(sig) for sig in signals}

    def handler(signum, frame):
        logger.info("Received %s, shutting down...", signal.Signals(signum).name)
        app.quit()

    for sig in signals:
        signal.signal(sig, handler)

    wakeup = QTimer()
    wakeup.timeout.connect(lambda: None)
    wakeup.start(_SIGNAL_POLL_MS)
    try:
        yield
    finally:
        wakeup.stop()
        for sig, old in previous.items():
            signal.signal(sig, old)


class TrunkSwiftApp:
    """
    Runs trunk-swift subcommands against one project.

    The toolchain and supervisor factory are injected so tests can drive
    every command without Xcode installed.
    """

    def __init__(self, project: ProjectConfig, toolchain: Toolchain | None = None,
                 supervisor_factory=WatchSupervisor):
        self._project = project
        self._toolchain = toolchain or XcodeToolchain(project)
        self._supervisor_factory = supervisor_factory

        # The supervisor of the current watch/serve session, if any.
        self._supervisor: WatchSupervisor | None = None

    @property
    def project(self) -> ProjectConfig:
        return self._project

    @property
    def supervisor(self) -> WatchSupervisor | None:
        return self._supervisor

    def dispatch(self, command: str) -> int:
        """
        Run one command by name and return its exit code.

        Every command except help and check first verifies the toolchain
        before doing any work.

        Raises:
            ToolUnavailableError, ConfigError, NotFoundError: fatal errors.
        """
        handlers = {
            Command.BUILD: self.build,
            Command.WATCH: self.watch,
            Command.SERVE: self.serve,
            Command.RUN: self.run,
            Command.CLEAN: self.clean,
            Command.CHECK: self.check,
            Command.HELP: self.help,
        }
        if command not in handlers:
            logger.error("Unknown command: %s", command)
            print(help_text())
            return 1

        if command in PRECHECKED_COMMANDS:
            self._toolchain.check_dependencies()

        return handlers[command]()

    # --- Commands ---

    def help(self) -> int:
        print(help_text())
        return 0

    def build(self) -> int:
        """Clean then build. A failed clean is tolerated; a failed build is not."""
        status(logger, "Building %s...", self._project.name)

        logger.info("Cleaning build directory...")
        if self._toolchain.clean() != 0:
            logger.warning("Clean step failed, building anyway")

        logger.info("Building project...")
        exit_status = self._toolchain.build()
        if exit_status != 0:
            logger.error("Build failed! (exit status %d)", exit_status)
            return 1

        status(logger, "Build completed successfully!")
        return 0

    def watch(self) -> int:
        """
        Build once, then rebuild on every change until interrupted.
        Returns 1 if the file watcher dies while watching.

        Each build runs as a child "trunk-swift build" process (or the
        configured [watch].command), so a superseded build is cancelled
        as a whole process group, xcodebuild included.
        """
        status(logger, "Starting watch mode for %s...", self._project.name)
        logger.info("Press Ctrl+C to stop watching")

        app = QCoreApplication.instance() or QCoreApplication([sys.argv[0]])
        config = self._project.watch_config(self.watch_task_command())

        failures = []

        def on_watch_failed(message):
            failures.append(message)
            app.quit()

        self._supervisor = self._supervisor_factory()
        self._supervisor.watch_failed.connect(on_watch_failed)
        self._supervisor.start(config)
        try:
            with _quit_on_signals(app):
                app.exec()
        finally:
            self._supervisor.stop()
        return 1 if failures else 0

    def serve(self) -> int:
        """Boot and open a simulator, then build & watch."""
        status(logger, "Starting serve mode for %s...", self._project.name)
        self._launch_simulator()
        return self.watch()

    def run(self) -> int:
        """Build, then boot and open a simulator."""
        status(logger, "Running %s in simulator...", self._project.name)
        if self.build() != 0:
            return 1

        self._launch_simulator()
        logger.info("App built successfully! Open Xcode and run the project to launch in simulator.")
        return 0

    def clean(self) -> int:
        status(logger, "Cleaning %s...", self._project.name)

        exit_status = self._toolchain.clean()
        if exit_status != 0:
            logger.error("xcodebuild clean failed (exit status %d)", exit_status)
            return 1

        for path in self._toolchain.remove_derived_data():
            logger.info("Removed %s", path)

        status(logger, "Clean completed!")
        return 0

    def check(self) -> int:
        """Verify dependencies, the project file, and the scheme."""
        status(logger, "Checking setup for %s...", self._project.name)

        self._toolchain.check_dependencies()

        pbxproj = self._project.project_file / "project.pbxproj"
        if not pbxproj.is_file():
            logger.error("Xcode project not found: %s", self._project.project_file.name)
            return 1

        schemes = self._toolchain.list_schemes()
        if self._project.scheme not in schemes:
            logger.error("Scheme '%s' not found in project", self._project.scheme)
            logger.info("Available schemes:")
            for scheme in schemes:
                print(f"        {scheme}")
            return 1

        status(logger, "Setup check passed! All dependencies and project configuration are correct.")
        return 0

    # --- Helpers ---

    def watch_task_command(self) -> list[str]:
        """argv run by the supervisor on every trigger."""
        if self._project.watch_command:
            return list(self._project.watch_command)

        argv = [sys.executable, "-m", "trunk_swift"]
        if self._project.source is not None:
            argv += ["--config", str(self._project.source)]
        return argv + [Command.BUILD]

    def _launch_simulator(self) -> str:
        """
        Boot the first configured simulator that exists and open Simulator.app.

        Returns:
            The name of the booted device.

        Raises:
            NotFoundError: If none of the configured simulators can be booted.
        """
        logger.info("Available simulators:")
        for line in filter_devices(self._toolchain.list_devices()):
            print(f"    {line}")

        logger.info("Launching simulator...")
        booted = None
        for name in self._project.simulators:
            try:
                exit_status = self._toolchain.boot(name)
            except NotFoundError:
                logger.debug("Simulator '%s' not available", name)
                continue
            if exit_status == 0:
                booted = name
                break
            logger.warning("Could not boot '%s' (exit status %d)", name, exit_status)

        if booted is None:
            raise NotFoundError(
                "None of the configured simulators could be booted: "
                + ", ".join(self._project.simulators)
            )

        if self._toolchain.open_simulator() != 0:
            logger.warning("Could not open the Simulator app")

        status(logger, "Simulator launched (%s)! You can now run the app from Xcode or use '%s run'",
               booted, PROG)
        return booted
