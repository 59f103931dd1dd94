"""
Diagnostics — Compiler messages and stream events

The backend's output parser turns each line of the compiler stream into
zero or more events:
- Diagnostic: an error/warning/info message, optionally tied to a unit
- ArtifactWritten: the compiler finished writing an artifact at a path
- SourceProcessed: the compiler finished reading a source file

DiagnosticsCollector is the thread-safe sink both pipeline workers
report into.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set

from .units import SourceUnit


class Severity(Enum):
    """Diagnostic categories, most severe first."""
    ERROR = "error"
    WARNING = "warning"
    INFORMATION = "information"
    STATISTICS = "statistics"


@dataclass(frozen=True)
class Diagnostic:
    """One compiler message."""
    severity: Severity
    message: str
    unit: Optional[SourceUnit] = None
    line: int = -1
    column: int = -1

    def __str__(self) -> str:
        location = ""
        if self.unit is not None:
            location = self.unit.path
            if self.line >= 0:
                location += f":{self.line}"
                if self.column >= 0:
                    location += f":{self.column}"
            location += ": "
        return f"{location}{self.severity.value}: {self.message}"


@dataclass(frozen=True)
class ArtifactWritten:
    """The backend wrote an artifact file."""
    path: str


@dataclass(frozen=True)
class SourceProcessed:
    """The backend finished processing a source file."""
    path: str


class DiagnosticsCollector:
    """
    Thread-safe store of reported diagnostics.

    The stream reader and the artifact indexer report concurrently;
    the orchestrating thread reads counts between passes.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._diagnostics: List[Diagnostic] = []

    def add(self, diagnostic: Diagnostic) -> None:
        with self._lock:
            self._diagnostics.append(diagnostic)

    def count(self, severity: Optional[Severity] = None) -> int:
        with self._lock:
            if severity is None:
                return len(self._diagnostics)
            return sum(1 for d in self._diagnostics if d.severity == severity)

    def messages(self, severity: Optional[Severity] = None) -> List[Diagnostic]:
        with self._lock:
            if severity is None:
                return list(self._diagnostics)
            return [d for d in self._diagnostics if d.severity == severity]

    def units_with_errors(self) -> Set[SourceUnit]:
        """Units that have at least one ERROR diagnostic attached."""
        with self._lock:
            return {
                d.unit for d in self._diagnostics
                if d.severity == Severity.ERROR and d.unit is not None
            }
