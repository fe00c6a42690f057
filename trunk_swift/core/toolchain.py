"""
Native toolchain abstraction and Xcode implementation.

This module defines the interface trunk-swift uses to talk to the native
build and simulator tools (Toolchain), plus the concrete implementation
(XcodeToolchain) that shells out to xcodebuild, xcrun simctl and open.

Every method is a thin, opaque command invocation: trunk-swift never
interprets compiler output, it only forwards it to the terminal and looks
at the exit status. The only output parsed here is the scheme list from
"xcodebuild -list" and the device list from "simctl list", both needed to
give a clear error before running a command that would fail anyway.

Output handling:
    - build / clean stream straight to the user's terminal (no capture)
      so long builds show progress as they happen.
    - Queries (version check, scheme list, device list, boot) capture
      output, because their text is inspected or re-printed selectively.
"""

import platform
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from trunk_swift.core.config import ProjectConfig
from trunk_swift.core.errors import NotFoundError, ToolUnavailableError

# Install hints printed alongside ToolUnavailableError.
XCODE_CLT_HINT = "Please install Xcode Command Line Tools."
XCODE_SELECT_HINT = (
    "Please install Xcode from the App Store and run:\n"
    "  sudo xcode-select --switch /Applications/Xcode.app/Contents/Developer"
)

# Device families shown by "serve" when listing simulators.
SIMULATOR_FAMILIES = ("iPhone", "iPad")

# Seconds to wait for quick query commands before giving up.
QUERY_TIMEOUT = 60


def default_derived_data_dir() -> Path:
    """Xcode's per-user DerivedData location."""
    return Path.home() / "Library" / "Developer" / "Xcode" / "DerivedData"


def parse_schemes(list_output: str) -> list[str]:
    """
    Extract scheme names from "xcodebuild -list" output.

    The relevant block looks like:

        Schemes:
            Broke
            BrokeTests

    and ends at the first blank line or the next section header.
    """
    schemes = []
    in_schemes = False
    for line in list_output.splitlines():
        stripped = line.strip()
        if stripped == "Schemes:":
            in_schemes = True
            continue
        if not in_schemes:
            continue
        if not stripped or stripped.endswith(":"):
            break
        schemes.append(stripped)
    return schemes


def filter_devices(devices_text: str, families=SIMULATOR_FAMILIES, limit: int = 10) -> list[str]:
    """Pick the first `limit` device lines belonging to the given families."""
    lines = [
        line.strip() for line in devices_text.splitlines()
        if any(family in line for family in families)
    ]
    return lines[:limit]


def _device_listed(devices_text: str, device_name: str) -> bool:
    # simctl lines look like "    iPhone 15 (UDID) (Shutdown)".
    prefix = f"{device_name} ("
    return any(line.strip().startswith(prefix) for line in devices_text.splitlines())


class Toolchain(ABC):
    """
    Abstract interface for the native build and simulator toolchain.

    Contract:
        - Methods returning int return the external command's exit status;
          a non-zero status is not an exception.
        - ToolUnavailableError means the tool itself could not be run.
        - NotFoundError means a named simulator does not exist.
    """

    @abstractmethod
    def check_dependencies(self) -> None:
        """Verify the required tools are installed and usable."""
        ...

    @abstractmethod
    def build_command(self) -> list[str]:
        """Full argv of the build invocation."""
        ...

    @abstractmethod
    def build(self) -> int:
        """Build the project, streaming output."""
        ...

    @abstractmethod
    def clean(self) -> int:
        """Remove the project's build products, streaming output."""
        ...

    @abstractmethod
    def list_schemes(self) -> list[str]:
        """Scheme names defined in the project."""
        ...

    @abstractmethod
    def list_devices(self) -> str:
        """Raw text listing of the available simulator devices."""
        ...

    @abstractmethod
    def boot(self, device_name: str) -> int:
        """Boot a simulator by name. Raises NotFoundError for unknown devices."""
        ...

    @abstractmethod
    def open_simulator(self) -> int:
        """Bring up the Simulator GUI application."""
        ...

    @abstractmethod
    def remove_derived_data(self) -> list[Path]:
        """Delete cached DerivedData for the project; return what was removed."""
        ...


class XcodeToolchain(Toolchain):
    """
    Toolchain implementation for Xcode projects on macOS.

    All commands run with the project root as the working directory and
    the project/scheme/configuration/destination from ProjectConfig passed
    through unchanged.
    """

    def __init__(self, project: ProjectConfig, derived_data_dir: Path | None = None):
        self._project = project
        self._derived_data_dir = derived_data_dir or default_derived_data_dir()

    def _project_args(self) -> list[str]:
        return [
            "-project", f"{self._project.name}.xcodeproj",
            "-scheme", self._project.scheme,
            "-configuration", self._project.configuration,
        ]

    def _run(self, argv: list[str], capture: bool = False) -> subprocess.CompletedProcess:
        """
        Run one external command in the project root.

        Raises:
            ToolUnavailableError: If the executable does not exist, or a
                                  captured query times out.
        """
        try:
            if capture:
                return subprocess.run(
                    argv,
                    cwd=self._project.root,
                    capture_output=True,
                    text=True,
                    timeout=QUERY_TIMEOUT,
                )
            return subprocess.run(argv, cwd=self._project.root)
        except FileNotFoundError:
            raise ToolUnavailableError(f"{argv[0]} not found. {XCODE_CLT_HINT}")
        except subprocess.TimeoutExpired:
            raise ToolUnavailableError(
                f"'{' '.join(argv)}' did not respond within {QUERY_TIMEOUT} seconds"
            )

    def check_dependencies(self):
        """
        Verify xcodebuild and xcrun are present and Xcode is configured.

        Having only the Command Line Tools installed passes the PATH check
        but makes "xcodebuild -version" fail, so both are checked.

        Raises:
            ToolUnavailableError: With an install hint for the missing piece.
        """
        if platform.system() != "Darwin":
            raise ToolUnavailableError("iOS development requires macOS (xcodebuild is not available).")

        for tool in ("xcodebuild", "xcrun"):
            if shutil.which(tool) is None:
                raise ToolUnavailableError(f"{tool} not found. {XCODE_CLT_HINT}")

        result = self._run(["xcodebuild", "-version"], capture=True)
        if result.returncode != 0:
            raise ToolUnavailableError(
                "Xcode is required but not properly installed or configured.\n"
                + XCODE_SELECT_HINT
            )

    def build_command(self):
        return [
            "xcodebuild", "build",
            *self._project_args(),
            "-destination", self._project.destination,
        ]

    def build(self):
        return self._run(self.build_command()).returncode

    def clean(self):
        return self._run(["xcodebuild", "clean", *self._project_args()]).returncode

    def list_schemes(self):
        result = self._run(
            ["xcodebuild", "-list", "-project", f"{self._project.name}.xcodeproj"],
            capture=True,
        )
        if result.returncode != 0:
            return []
        return parse_schemes(result.stdout)

    def list_devices(self):
        """
        Return the text of "xcrun simctl list devices available".

        Raises:
            ToolUnavailableError: If simctl exits non-zero (usually no
                                  simulator runtime is installed).
        """
        result = self._run(["xcrun", "simctl", "list", "devices", "available"], capture=True)
        if result.returncode != 0:
            raise ToolUnavailableError(
                f"Could not list simulators: {result.stderr.strip() or 'simctl failed'}"
            )
        return result.stdout

    def boot(self, device_name):
        """
        Boot the named simulator.

        A device that is already booted counts as success. simctl reports
        it as an error ("Unable to boot device in current state: Booted")
        but the device is exactly where serve needs it.

        Raises:
            NotFoundError: If no available device has this name.
        """
        if not _device_listed(self.list_devices(), device_name):
            raise NotFoundError(f"Simulator '{device_name}' not found")

        result = self._run(["xcrun", "simctl", "boot", device_name], capture=True)
        if result.returncode != 0 and "current state: Booted" in (result.stderr or ""):
            return 0
        return result.returncode

    def open_simulator(self):
        return self._run(["open", "-a", "Simulator"]).returncode

    def remove_derived_data(self):
        removed = []
        if not self._derived_data_dir.is_dir():
            return removed
        for path in sorted(self._derived_data_dir.glob(f"*{self._project.name}*")):
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
            removed.append(path)
        return removed
