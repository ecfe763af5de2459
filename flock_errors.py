from __future__ import annotations


class SandboxError(Exception):
    """Base class for every error raised by the training engine."""


class DimensionMismatch(SandboxError):
    """Genome, topology or sensor widths disagree."""

    def __init__(self, expected: int, actual: int, what: str = "genome") -> None:
        super().__init__(f"{what} length mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual
        self.what = what

    def __reduce__(self):
        return type(self), (self.expected, self.actual, self.what)


class ConfigurationError(SandboxError):
    """Invalid session, topology or generation configuration."""


class NumericFault(SandboxError):
    """A non-finite value appeared while simulating one agent."""


class SessionBusy(SandboxError):
    """Another advance() call is already running on this session."""
