"""
Errors — Exception hierarchy for the compile orchestrator

- CompilerError: the operation cannot proceed (process not started,
  output directory missing). Fails the whole compile.
- CacheCorruptedError: the dependency cache is unusable. Converted into a
  rebuild-next-time request; never retried in place.
- BadArtifactFormatError: one artifact could not be parsed. Reported as a
  diagnostic, never aborts the batch.
"""


class IncremakeError(Exception):
    """Base class for all incremake errors."""


class CompilerError(IncremakeError):
    """Raised when a compile operation fails as a whole."""


class CacheCorruptedError(IncremakeError):
    """Raised by the dependency cache when its stored data is inconsistent."""


class BadArtifactFormatError(IncremakeError):
    """Raised when an artifact's structural metadata cannot be parsed."""

    def __init__(self, message: str = "", path: str = ""):
        self.path = path
        super().__init__(message)
