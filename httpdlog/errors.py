from __future__ import annotations

from typing import Iterable


class InvalidFormatError(ValueError):
    """The log format string cannot be compiled into a matcher."""

    def __init__(self, message: str, format: str | None = None) -> None:
        super().__init__(message)
        self.format = format


class MissingFieldsError(InvalidFormatError):
    """The compiled format lacks fields the caller depends on."""

    def __init__(self, missing: Iterable[str], format: str | None = None) -> None:
        self.missing = tuple(missing)
        super().__init__("Missing required format fields: " + ", ".join(self.missing), format)


class ConfigError(ValueError):
    pass
