"""
Console logging setup for trunk-swift.

All modules log through the standard logging package with a module-level
logger. setup_logging() installs a single stderr handler whose formatter
prints a coloured prefix per level:

    [TRUNK]   green   status lines (custom STATUS level)
    [INFO]    blue
    [WARNING] yellow
    [ERROR]   red

Colour codes are only emitted when the stream is a terminal, so piped
output and test captures stay plain.
"""

import logging
import sys

# Level for [TRUNK] status lines, between INFO and WARNING.
STATUS = 25
logging.addLevelName(STATUS, "STATUS")

_RESET = "\033[0m"

_PREFIXES = {
    logging.DEBUG: ("[DEBUG]", "\033[0;90m"),
    logging.INFO: ("[INFO]", "\033[0;34m"),
    STATUS: ("[TRUNK]", "\033[0;32m"),
    logging.WARNING: ("[WARNING]", "\033[1;33m"),
    logging.ERROR: ("[ERROR]", "\033[0;31m"),
    logging.CRITICAL: ("[ERROR]", "\033[0;31m"),
}


class PrefixFormatter(logging.Formatter):
    """Formats records as "<coloured prefix> message"."""

    def __init__(self, use_color: bool = False):
        super().__init__("%(message)s")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        prefix, color = _PREFIXES.get(record.levelno, (f"[{record.levelname}]", ""))
        if self.use_color and color:
            prefix = f"{color}{prefix}{_RESET}"
        return f"{prefix} {message}"


def status(logger: logging.Logger, message: str, *args) -> None:
    """Log a [TRUNK] status line."""
    logger.log(STATUS, message, *args)


def setup_logging(verbose: bool = False, stream=None) -> None:
    """
    Configure the "trunk_swift" logger. Safe to call more than once.

    Args:
        verbose: Show DEBUG records as well as INFO and above.
        stream:  Where log lines go. Defaults to sys.stderr. Colour codes are
                 added only when the stream is a terminal.

    A repeat call only updates the level; the handler is installed once.
    """
    stream = stream if stream is not None else sys.stderr
    root = logging.getLogger("trunk_swift")
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    if root.handlers:
        return

    handler = logging.StreamHandler(stream)
    handler.setFormatter(PrefixFormatter(use_color=hasattr(stream, "isatty") and stream.isatty()))
    root.addHandler(handler)
