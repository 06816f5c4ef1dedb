# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Error types shared across the key check pipeline."""


class ConfigurationError(ValueError):
    """Represent an invalid option, threshold, or missing required input.

    Raised before any work starts so callers can tell a misconfigured run
    apart from a policy failure.
    """


class CacheError(RuntimeError):
    """Represent a fatal cache persistence failure."""


class DartSyntaxError(ValueError):
    """Represent a structural parse failure for one Dart source file."""

    def __init__(self, message: str, line: int, column: int) -> None:
        super().__init__(f"{message} at {line}:{column}")
        self.line = line
        self.column = column
