"""
Error types for fmc.

Configuration errors are detected before anything is scheduled and abort the
whole run. DurationParseError is local to one Runner.
"""

from pathlib import Path
from typing import Iterable


class FmcError(Exception):
    """Base exception for all fmc failures."""
    pass


class ConfigurationError(FmcError):
    """Raised when the job list or the command line cannot be scheduled."""
    pass


class DuplicateDestinationError(ConfigurationError):
    """Raised when two jobs target the same destination path."""

    def __init__(self, destination: Path):
        self.destination = destination
        super().__init__(f"More than one job writes to {destination}")


class MissingSourceError(ConfigurationError):
    """Raised when a job's source file does not exist."""

    def __init__(self, source: Path):
        self.source = source
        super().__init__(f"Source file does not exist: {source}")


class ExtensionMismatchError(ConfigurationError):
    """Raised when an output path does not end with the preset chain's extension."""

    def __init__(self, destination: Path, extension: str):
        self.destination = destination
        self.extension = extension
        super().__init__(
            f"Path {destination} has incorrect extension, expected {extension}. "
            "Use [ext] in --output to fill in the correct extension."
        )


class ChainedOutputError(ConfigurationError):
    """Raised when one job writes to a file another job reads."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"{path} is the output of one job and the input of another")


class UnknownPresetError(ConfigurationError):
    """Raised when a preset token does not match any catalog entry."""

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Unknown preset: {token}")


class ArgumentError(ConfigurationError):
    """Raised when positional arguments cannot be grouped into jobs."""

    def __init__(self, message: str, items: Iterable[str] = ()):
        self.items = list(items)
        super().__init__(message)


class ConflictAbort(ConfigurationError):
    """Raised when the user chooses to exit on an existing destination."""

    def __init__(self, destination: Path):
        self.destination = destination
        super().__init__(f"Aborted: {destination} already exists")


class DurationParseError(FmcError):
    """Raised when ffmpeg's Duration line cannot be parsed."""

    def __init__(self, line: str):
        self.line = line
        super().__init__(f"Could not parse duration from line: {line!r}")
