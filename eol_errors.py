"""
Exception types shared by the eolconv modules.
"""

from typing import Optional


class EolConvError(Exception):
    """Base class for every error eolconv raises on purpose."""


class ConfigurationError(EolConvError):
    """Invalid option, option combination or pattern; raised before any file I/O."""


class PatternError(ConfigurationError):
    """A glob pattern that cannot be compiled."""

    def __init__(self, pattern: str, position: int, reason: str) -> None:
        self.pattern = pattern
        self.position = position
        self.reason = reason
        super().__init__(
            f"Invalid pattern '{pattern}' at position {position}: {reason}"
        )


class ConversionError(EolConvError):
    """Reading, converting or replacing one file failed."""

    def __init__(self, path: str, error: Optional[OSError] = None) -> None:
        self.path = path
        self.error = error
        detail: str = "unknown error"
        if error is not None:
            detail = error.strerror or str(error)
        super().__init__(f"Failed to convert {path}: {detail}")


class SelectionError(EolConvError):
    """A directory could not be read while expanding a glob pattern."""

    def __init__(self, path: str, error: OSError) -> None:
        self.path = path
        self.error = error
        super().__init__(
            f"Cannot read directory {path}: {error.strerror or str(error)}"
        )
