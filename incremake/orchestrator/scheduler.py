"""
ChunkScheduler — Partitions units into dependency-ordered chunks

Turns a set of source units into CompilationChunks and decides which
output targets each chunk compiles into:
- Units are grouped by owning module; units without a module are dropped
  (they were invalidated and need no compilation)
- Module ordering and cycle grouping are delegated to the ModuleChunker
- A single-module chunk targets the module's real output directories:
  MAIN then TEST when they differ, one COMBINED pass otherwise
- A multi-module chunk always targets one fresh staging directory
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..core.context import CompileContext
from ..core.errors import CompilerError
from ..core.interfaces import ModuleChunker, ProjectIndex
from ..core.units import Module, OutputTarget, SourceUnit, TargetKind
from .session import CompileSession

logger = logging.getLogger(__name__)


class CompilationChunk:
    """
    Mutually cyclic modules plus the units selected for this round.

    The source filter decides which units files_to_compile() returns;
    it is switched per output target before every pass.
    """

    def __init__(
        self,
        modules: Sequence[Module],
        module_to_units: Dict[Module, Iterable[SourceUnit]],
        project: ProjectIndex,
    ):
        self.modules: Tuple[Module, ...] = tuple(modules)
        self._project = project
        self._files: Dict[Module, List[SourceUnit]] = {
            module: sorted(module_to_units.get(module, ()), key=lambda u: u.path)
            for module in self.modules
        }
        self._substitutes: Dict[SourceUnit, SourceUnit] = {}
        self.source_filter = TargetKind.COMBINED

    @property
    def module_count(self) -> int:
        return len(self.modules)

    @property
    def module_names(self) -> str:
        return ", ".join(module.name for module in self.modules)

    @property
    def substitution_count(self) -> int:
        return len(self._substitutes)

    def set_filter(self, kind: TargetKind) -> None:
        self.source_filter = kind

    def all_files(self, module: Module) -> List[SourceUnit]:
        """Original units of a module, ignoring the filter."""
        return list(self._files.get(module, ()))

    def files_to_compile(self, module: Optional[Module] = None) -> List[SourceUnit]:
        """
        Units the backend should compile under the current filter.

        Transformed copies replace their originals.
        """
        modules = (module,) if module is not None else self.modules
        selected: List[SourceUnit] = []
        for m in modules:
            for unit in self._files.get(m, ()):
                if self._accepts(unit):
                    selected.append(self._substitutes.get(unit, unit))
        return selected

    def substitute(self, original: SourceUnit, replacement: SourceUnit) -> None:
        self._substitutes[original] = replacement

    def source_roots(self) -> List[str]:
        """Source roots of every module matching the current filter."""
        roots: List[str] = []
        for module in self.modules:
            for root in self._project.source_roots(module, self.source_filter):
                if root not in roots:
                    roots.append(root)
        return roots

    def _accepts(self, unit: SourceUnit) -> bool:
        if self.source_filter == TargetKind.COMBINED:
            return True
        is_test = self._project.is_test_source(unit)
        return is_test if self.source_filter == TargetKind.TEST else not is_test

    def __repr__(self) -> str:
        return f"CompilationChunk({self.module_names})"


class ChunkScheduler:
    """
    Builds chunks and output targets for a compile round.

    Usage:
        scheduler = ChunkScheduler(context, chunker, session)
        for chunk in scheduler.plan(scheduler.group_by_module(units)):
            for target in scheduler.targets_for(chunk):
                ...
    """

    def __init__(self, context: CompileContext, chunker: ModuleChunker, session: CompileSession):
        self._context = context
        self._chunker = chunker
        self._session = session

    def group_by_module(self, units: Iterable[SourceUnit]) -> Dict[Module, Set[SourceUnit]]:
        """Map each unit to its owning module, dropping unresolvable units."""
        module_to_units: Dict[Module, Set[SourceUnit]] = {}
        for unit in units:
            module = self._context.module_for(unit)
            if module is None:
                logger.debug("No module for %s, looks like it was invalidated", unit.path)
                continue
            module_to_units.setdefault(module, set()).add(unit)
        return module_to_units

    def plan(self, module_to_units: Dict[Module, Set[SourceUnit]]) -> List[CompilationChunk]:
        """Chunks in dependency order."""
        if not module_to_units:
            return []
        modules = sorted(module_to_units, key=lambda m: m.name)
        groups = self._chunker.sorted_chunks(modules)
        return [
            CompilationChunk(group, module_to_units, self._context.project)
            for group in groups
        ]

    def targets_for(self, chunk: CompilationChunk) -> List[OutputTarget]:
        """
        Output targets of a chunk, in pass order.

        Raises:
            CompilerError: a module has no output directory configured
        """
        if chunk.module_count != 1:
            staging_dir = self._session.create_staging_dir()
            return [OutputTarget(staging_dir, TargetKind.COMBINED, staging=True)]

        module = chunk.modules[0]
        output_dir = self._session.output_dir(module)
        targets: List[OutputTarget] = []
        if self._session.compiles_tests_separately(module):
            if output_dir is not None:
                targets.append(OutputTarget(output_dir, TargetKind.MAIN))
            targets.append(OutputTarget(self._session.test_output_dir(module), TargetKind.TEST))
        else:
            if output_dir is None:
                raise CompilerError(f'Sources output dir is null for module "{module.name}"')
            targets.append(OutputTarget(output_dir, TargetKind.COMBINED))
        return targets
