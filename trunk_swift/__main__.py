"""
Command-line entry point for trunk-swift.

This module is invoked when the package is run directly via:
    python -m trunk_swift <command>

or through the "trunk-swift" console script. It parses arguments, sets up
logging, loads the project config, and hands the command to
TrunkSwiftApp. Any TrunkError that escapes a command is printed as a
one-line diagnostic and turned into exit code 1.
"""

import argparse
import logging
import sys

from trunk_swift import __version__
from trunk_swift.app import PROG, TrunkSwiftApp, help_text
from trunk_swift.core.commands import Command, HELP_ALIASES
from trunk_swift.core.config import load_config
from trunk_swift.core.errors import TrunkError
from trunk_swift.logging_ import setup_logging

logger = logging.getLogger("trunk_swift")


def build_parser() -> argparse.ArgumentParser:
    # argparse's own help is disabled so "-h" prints the same text as "help".
    parser = argparse.ArgumentParser(prog=PROG, add_help=False)
    parser.add_argument("command", nargs="?", default=Command.HELP)
    parser.add_argument("--config", default=None,
                        help="Path to the config file (default: ./trunk.toml)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    parser.add_argument("--help", "-h", action="store_true", dest="show_help")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    command = Command.HELP if args.show_help else args.command
    if command in HELP_ALIASES:
        print(help_text())
        return 0

    try:
        project = load_config(args.config)
        return TrunkSwiftApp(project).dispatch(command)
    except TrunkError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
