# roimask_logging.py

import os
import sys
from dataclasses import dataclass
from typing import Optional


def _basename(file_path: str) -> str:
    """
    Extract the module name used in the log prefix.

    Parameters
    ----------
    file_path : str
        Path to the calling file (usually ``__file__``).

    Returns
    -------
    str
        Basename with a .py extension.
    """
    base = os.path.basename(file_path)
    return base if base.endswith(".py") else f"{base}.py"


@dataclass
class _Logger:
    file: str
    verbose: bool = False

    def set_verbose(self, verbose: bool) -> None:
        """
        Set the verbosity level for debug messages.

        Parameters
        ----------
        verbose : bool
            Whether to enable verbose debug output.
        """
        self.verbose = bool(verbose)

    # Always-visible progress messages
    def info(self, msg: str, *args) -> None:
        """
        Log an informational message (always visible, to stdout).

        Parameters
        ----------
        msg : str
            Message format string.
        *args
            Arguments for string formatting.
        """
        self._emit("", msg, *args, stream=sys.stdout)

    # Verbose-only messages
    def debug(self, msg: str, *args) -> None:
        """
        Log a debug message (only visible when verbose=True).

        Parameters
        ----------
        msg : str
            Message format string.
        *args
            Arguments for string formatting.
        """
        if self.verbose:
            self._emit("", msg, *args, stream=sys.stdout)

    def warn(self, msg: str, *args) -> None:
        """
        Log a warning message (always visible, to stderr).

        Parameters
        ----------
        msg : str
            Message format string.
        *args
            Arguments for string formatting.
        """
        self._emit("WARNING: ", msg, *args, stream=sys.stderr)

    def error(self, msg: str, *args) -> None:
        """
        Log an error message (always visible, to stderr).

        Parameters
        ----------
        msg : str
            Message format string.
        *args
            Arguments for string formatting.
        """
        self._emit("ERROR: ", msg, *args, stream=sys.stderr)

    def _format(self, msg: str, *args) -> str:
        """Apply %-style arguments, falling back to joining them on bad formats."""
        try:
            return msg % args if args else msg
        except (TypeError, ValueError):
            # Fallback if formatting fails
            return f"{msg} {' '.join(map(str, args))}".strip()

    def _emit(self, level_prefix: str, msg: str, *args, stream) -> None:
        """
        Emit a formatted log message to the specified stream.

        Parameters
        ----------
        level_prefix : str
            Prefix indicating log level (e.g., "WARNING: ").
        msg : str
            Message format string.
        *args
            Arguments for string formatting.
        stream : file-like
            Output stream (stdout or stderr).
        """
        prefix = f"[roimask/{_basename(self.file)}] "
        print(prefix + level_prefix + self._format(msg, *args), file=stream, flush=True)


def get_logger(file: str, verbose: Optional[bool] = None) -> _Logger:
    """
    Create and return a logger instance for the specified file.

    Parameters
    ----------
    file : str
        File path or name for logger identification.
    verbose : bool or None, optional
        Whether to enable verbose output. If None, checks the ROIMASK_VERBOSE
        environment variable.

    Returns
    -------
    _Logger
        Configured logger instance.
    """
    if verbose is None:
        # env var takes precedence when explicit flag isn't provided
        env_v = os.getenv("ROIMASK_VERBOSE", "0").strip().lower()
        verbose = env_v in ("1", "true", "yes", "on")
    return _Logger(file=file, verbose=bool(verbose))
