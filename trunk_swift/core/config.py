"""
Project and watch configuration for trunk-swift.

Configuration comes from a static TOML file (trunk.toml by default) that
is read once at startup and never changes afterwards. Every value has a
default suited to a project named "Broke", so such a project
works with no config file at all.

The file is validated by pydantic models, one per TOML table
(ProjectSection, WatchSection, ServeSection). Two frozen dataclasses come
out of the loader:
    ProjectConfig — what to build (project, scheme, configuration,
                    destination) and which simulators to try for serve/run.
    WatchConfig   — what to watch, what to ignore, how long to debounce,
                    and which command to run on every trigger.
"""

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
)

from trunk_swift.core.errors import ConfigError
from trunk_swift.core.globs import PathMatcher

DEFAULT_CONFIG_FILE = "trunk.toml"

DEFAULT_PROJECT_NAME = "Broke"
DEFAULT_CONFIGURATION = "Debug"
DEFAULT_DESTINATION = "generic/platform=iOS"

DEFAULT_IGNORE_PATHS = ("{name}.xcodeproj/**", "*.xcuserstate", "DerivedData/**")
DEFAULT_WATCH_PATHS = ("{name}/**/*.swift", "{name}/**/*.xib", "{name}/**/*.storyboard")

# Simulators tried in order by serve/run; the first one that boots wins.
DEFAULT_SIMULATORS = ("iPhone 15", "iPhone 14", "iPhone 13")

# Fixed debounce window, measured from the first change in a burst.
DEFAULT_DEBOUNCE_MS = 300

# Time a cancelled task gets to exit on SIGTERM before it is killed.
DEFAULT_GRACE_PERIOD_MS = 2000


@dataclass(frozen=True)
class WatchConfig:
    """
    Immutable input to WatchSupervisor.start().

    paths and ignore are glob patterns relative to root. debounce_interval
    and grace_period are in seconds. task_command is a full argv, run with
    root as the working directory.
    """
    paths: frozenset[str]
    task_command: tuple[str, ...]
    ignore: frozenset[str] = frozenset()
    debounce_interval: float = DEFAULT_DEBOUNCE_MS / 1000
    grace_period: float = DEFAULT_GRACE_PERIOD_MS / 1000
    root: Path = field(default_factory=Path.cwd)
    force_polling: bool = False

    def validate(self) -> PathMatcher:
        """
        Check every field and return the compiled include/ignore matcher.

        Raises:
            ConfigError: Empty paths, invalid glob, empty command, or a
                         negative duration.
        """
        if not self.paths:
            raise ConfigError("No watch paths configured: at least one glob is required")
        if not self.task_command:
            raise ConfigError("No task command configured for watch mode")
        if self.debounce_interval < 0:
            raise ConfigError(f"debounce interval must not be negative (got {self.debounce_interval})")
        if self.grace_period < 0:
            raise ConfigError(f"grace period must not be negative (got {self.grace_period})")
        return PathMatcher(self.paths, self.ignore)


@dataclass(frozen=True)
class ProjectConfig:
    """Everything loaded from the config file, with defaults filled in."""
    name: str = DEFAULT_PROJECT_NAME
    scheme: str = DEFAULT_PROJECT_NAME
    configuration: str = DEFAULT_CONFIGURATION
    destination: str = DEFAULT_DESTINATION
    root: Path = field(default_factory=Path.cwd)
    watch_paths: tuple[str, ...] = ()
    ignore_paths: tuple[str, ...] = ()
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    grace_period_ms: int = DEFAULT_GRACE_PERIOD_MS
    force_polling: bool = False
    watch_command: tuple[str, ...] = ()
    simulators: tuple[str, ...] = DEFAULT_SIMULATORS
    source: Path | None = None

    @property
    def project_file(self) -> Path:
        """Path to the Xcode project bundle, e.g. <root>/Broke.xcodeproj."""
        return self.root / f"{self.name}.xcodeproj"

    def watch_config(self, task_command) -> WatchConfig:
        """Build the supervisor input for this project around a task argv."""
        return WatchConfig(
            paths=frozenset(self.watch_paths),
            ignore=frozenset(self.ignore_paths),
            debounce_interval=self.debounce_ms / 1000,
            grace_period=self.grace_period_ms / 1000,
            task_command=tuple(task_command),
            root=self.root,
            force_polling=self.force_polling,
        )


class ProjectSection(BaseModel):
    """The [project] table: what xcodebuild builds."""

    model_config = ConfigDict(extra="forbid")

    name: StrictStr = Field(default=DEFAULT_PROJECT_NAME, min_length=1)
    # Defaults to the project name.
    scheme: Annotated[StrictStr, Field(min_length=1)] | None = None
    configuration: StrictStr = Field(default=DEFAULT_CONFIGURATION, min_length=1)
    destination: StrictStr = Field(default=DEFAULT_DESTINATION, min_length=1)


class WatchSection(BaseModel):
    """The [watch] table. Unset path lists default to globs under the project name."""

    model_config = ConfigDict(extra="forbid")

    paths: list[StrictStr] | None = None
    ignore: list[StrictStr] | None = None
    debounce_ms: StrictInt = Field(default=DEFAULT_DEBOUNCE_MS, ge=0)
    grace_period_ms: StrictInt = Field(default=DEFAULT_GRACE_PERIOD_MS, ge=0)
    force_polling: StrictBool = False
    command: list[StrictStr] = Field(default_factory=list)


class ServeSection(BaseModel):
    """The [serve] table: simulators tried in order."""

    model_config = ConfigDict(extra="forbid")

    simulators: list[StrictStr] = Field(default_factory=lambda: list(DEFAULT_SIMULATORS))


class ConfigFile(BaseModel):
    """A whole trunk.toml document."""

    model_config = ConfigDict(extra="forbid")

    project: ProjectSection = Field(default_factory=ProjectSection)
    watch: WatchSection = Field(default_factory=WatchSection)
    serve: ServeSection = Field(default_factory=ServeSection)


def _describe(error: ValidationError) -> str:
    """Render pydantic errors as "[section].key: message" lines."""
    lines = []
    for item in error.errors():
        loc = item["loc"]
        where = f"[{loc[0]}]" if loc else "config"
        for part in loc[1:]:
            where += f"[{part}]" if isinstance(part, int) else f".{part}"
        lines.append(f"{where}: {item['msg']}")
    return "; ".join(lines)


def parse_config(data: dict, root: Path, source: Path | None = None) -> ProjectConfig:
    """
    Turn a parsed TOML document into a ProjectConfig.

    Args:
        data:   The TOML document as a dict (an empty dict gives all defaults).
        root:   Project root that relative globs and the .xcodeproj resolve from.
        source: The file the data came from, kept for diagnostics.

    Raises:
        ConfigError: For unknown keys, wrong types, negative durations,
                     or invalid globs.
    """
    try:
        document = ConfigFile.model_validate(data)
    except ValidationError as e:
        where = f" in {source}" if source is not None else ""
        raise ConfigError(f"Invalid configuration{where}: {_describe(e)}")

    project, watch = document.project, document.watch
    name = project.name

    watch_paths = watch.paths
    if watch_paths is None:
        watch_paths = [p.format(name=name) for p in DEFAULT_WATCH_PATHS]
    ignore_paths = watch.ignore
    if ignore_paths is None:
        ignore_paths = [p.format(name=name) for p in DEFAULT_IGNORE_PATHS]

    config = ProjectConfig(
        name=name,
        scheme=project.scheme or name,
        configuration=project.configuration,
        destination=project.destination,
        root=root,
        watch_paths=tuple(watch_paths),
        ignore_paths=tuple(ignore_paths),
        debounce_ms=watch.debounce_ms,
        grace_period_ms=watch.grace_period_ms,
        force_polling=watch.force_polling,
        watch_command=tuple(watch.command),
        simulators=tuple(document.serve.simulators),
        source=source,
    )

    # Fail at load time on bad globs rather than when watch mode starts.
    PathMatcher(config.watch_paths, config.ignore_paths)
    return config


def load_config(path: Path | None = None) -> ProjectConfig:
    """
    Load the project configuration from a TOML file.

    Args:
        path: Config file to read. Defaults to ./trunk.toml. If the default
              file does not exist, built-in defaults are used; an explicitly
              requested file that does not exist is an error.

    Returns:
        ProjectConfig whose root is the directory containing the file.

    Raises:
        ConfigError: Missing explicit file, unreadable file, invalid TOML,
                     or invalid values.
    """
    explicit = path is not None
    path = Path(path) if explicit else Path.cwd() / DEFAULT_CONFIG_FILE

    if not path.is_file():
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return parse_config({}, root=path.parent.resolve())

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Could not read config file {path}: {e}")

    return parse_config(data, root=path.parent.resolve(), source=path)
