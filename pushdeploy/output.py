"""Terminal output shared by the local and remote entry points."""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr; stdout is reserved for results."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def use_color(stream=None) -> bool:
    stream = stream or sys.stderr
    if os.environ.get("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


def abort_message(message: str) -> None:
    """Print a highlighted error message to stderr."""
    color = "\033[1;31m" if use_color() else ""
    reset = "\033[0m" if color else ""
    print(f"{color}error:{reset} {message}", file=sys.stderr)


def success_message(message: str) -> None:
    color = "\033[1;32m" if use_color(sys.stdout) else ""
    reset = "\033[0m" if color else ""
    print(f"{color}{message}{reset}")
