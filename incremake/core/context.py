"""
CompileContext — Shared state of one compile operation

Bundles what every stage needs: the project index, the dependency cache,
the diagnostics sink, progress/cancellation and the compile scope.
Rebuild requests are persisted through an optional BuildStateStore so
they take effect on the next invocation.
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

from .diagnostics import Diagnostic, DiagnosticsCollector, Severity
from .interfaces import DependencyCache, ProgressIndicator, ProjectIndex
from .units import Module, SourceUnit, is_under

logger = logging.getLogger(__name__)


ScopePredicate = Callable[[SourceUnit], bool]


def directory_scope(directories: Iterable[str]) -> ScopePredicate:
    """Scope containing every unit below one of the directories."""
    roots = [str(d) for d in directories]

    def belongs(unit: SourceUnit) -> bool:
        return any(is_under(unit.path, root) for root in roots)

    return belongs


def unit_scope(units: Iterable[SourceUnit]) -> ScopePredicate:
    """Scope containing exactly the given units."""
    members = frozenset(units)
    return lambda unit: unit in members


class CompileContext:
    """
    Context passed through scheduler, pipeline and relocator.

    Thread Safety:
    - report() may be called from pipeline workers
    - everything else is used from the orchestrating thread
    """

    def __init__(
        self,
        project: ProjectIndex,
        dependency_cache: DependencyCache,
        progress: Optional[ProgressIndicator] = None,
        scope: Optional[ScopePredicate] = None,
        state=None,
    ):
        """
        Args:
            project: Host project index
            dependency_cache: Class/source dependency cache
            progress: Progress indicator (a silent one if None)
            scope: Predicate for the compile scope (everything if None)
            state: Optional BuildStateStore receiving rebuild requests
        """
        self.project = project
        self.dependency_cache = dependency_cache
        self.progress = progress or ProgressIndicator()
        self._scope = scope
        self._state = state
        self._diagnostics = DiagnosticsCollector()
        self._rebuild_reason: Optional[str] = None

    # Diagnostics

    def report(
        self,
        severity: Severity,
        message: str,
        unit: Optional[SourceUnit] = None,
        line: int = -1,
        column: int = -1,
    ) -> None:
        self.add_diagnostic(Diagnostic(severity, message, unit, line, column))

    def add_diagnostic(self, diagnostic: Diagnostic) -> None:
        if diagnostic.severity == Severity.ERROR:
            logger.debug("Compiler error: %s", diagnostic)
        self._diagnostics.add(diagnostic)

    def message_count(self, severity: Optional[Severity] = None) -> int:
        return self._diagnostics.count(severity)

    @property
    def error_count(self) -> int:
        return self._diagnostics.count(Severity.ERROR)

    def messages(self, severity: Optional[Severity] = None) -> List[Diagnostic]:
        return self._diagnostics.messages(severity)

    def units_with_errors(self) -> Set[SourceUnit]:
        return self._diagnostics.units_with_errors()

    # Scope and project

    def in_scope(self, unit: SourceUnit) -> bool:
        if self._scope is None:
            return True
        return self._scope(unit)

    def module_for(self, unit: SourceUnit) -> Optional[Module]:
        return self.project.module_for(unit)

    def is_canceled(self) -> bool:
        return self.progress.is_canceled()

    # Rebuild requests

    def request_rebuild_next_time(self, reason: str) -> None:
        """Schedule a full rebuild for the next invocation."""
        logger.warning("Full rebuild requested for next build: %s", reason)
        self._rebuild_reason = reason or "Dependency cache corrupted"
        if self._state is not None:
            self._state.request_rebuild(self._rebuild_reason)

    @property
    def rebuild_requested(self) -> bool:
        return self._rebuild_reason is not None

    @property
    def rebuild_reason(self) -> Optional[str]:
        return self._rebuild_reason

    @property
    def state_dir(self) -> Optional[Path]:
        return self._state.state_dir if self._state is not None else None
