"""
CLI command and run-outcome definitions.

This module defines the subcommands trunk-swift understands and the
possible outcomes of a supervised task run. Each command maps to one
handler on TrunkSwiftApp; the ordered list and the descriptions below
drive the help text so it never drifts from the dispatcher.

Commands:
    build — Clean and build the Xcode project once
    watch — Build, then rebuild whenever a watched source file changes
    serve — Boot a simulator, open it, then build & watch
    run   — Build and boot a simulator, without watching
    clean — Remove build products and DerivedData
    check — Verify the toolchain, project file, and scheme
    help  — Show usage
"""


class Command:
    """
    String constants identifying each CLI subcommand.

    Plain string constants (rather than an enum) compare directly against
    the argv word the user typed.
    """
    BUILD = "build"
    WATCH = "watch"
    SERVE = "serve"
    RUN = "run"
    CLEAN = "clean"
    CHECK = "check"
    HELP = "help"


# Commands in the order the help text lists them.
COMMAND_ORDER = [
    Command.BUILD,
    Command.WATCH,
    Command.SERVE,
    Command.RUN,
    Command.CLEAN,
    Command.CHECK,
    Command.HELP,
]

# One-line descriptions shown in the help text.
COMMAND_DESCRIPTIONS = {
    Command.BUILD: "Build the Swift iOS app",
    Command.WATCH: "Build & watch the Swift iOS app for changes",
    Command.SERVE: "Build, watch & serve the Swift iOS app (launch simulator)",
    Command.RUN: "Build and run the app in simulator",
    Command.CLEAN: "Clean build artifacts",
    Command.CHECK: "Check if setup is correct",
    Command.HELP: "Show this help message",
}

# Aliases accepted for the help command, matching common CLI conventions.
HELP_ALIASES = {Command.HELP, "-h", "--help"}

# Commands preceded by the toolchain dependency check. "help" must work on
# any machine, and "check" runs the dependency check as its own first step.
PRECHECKED_COMMANDS = {
    Command.BUILD,
    Command.WATCH,
    Command.SERVE,
    Command.RUN,
    Command.CLEAN,
}


class RunOutcome:
    """
    String constants for how a supervised task run ended.

    SUCCESS   — the task exited with status 0
    FAILURE   — non-zero exit, or the command could not be started
    CANCELLED — superseded by newer changes, or stopped; never an error
    """
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
