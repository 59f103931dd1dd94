"""
Compile Orchestrator — Incremental compilation driver for incremake

Public API for compiling a set of source units through an opaque backend
compiler and keeping the outstanding-work set exact.

Usage:
    from incremake.orchestrator import DependencyFixpointDriver

    driver = DependencyFixpointDriver(
        context=context,          # project index, dependency cache, progress, scope
        compiler=backend,         # BackendCompiler adapter
        chunker=chunker,          # ModuleChunker (cycle grouping, ordering)
        locator=locator,          # SourceLocator
        files=units_to_compile,
    )
    items = driver.compile()      # confirmed OutputItems
    retry = driver.outstanding    # units still needing compilation

Flow:
    requested units -> chunks -> per target: process pipeline -> relocation
    -> dependents of what compiled, limited to the compile scope
    -> exactly one further round (no transitive fixpoint)
    outstanding = (requested | dependents) - succeeded
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ..config import Config
from ..core.context import CompileContext
from ..core.diagnostics import Severity
from ..core.errors import CacheCorruptedError, CompilerError
from ..core.interfaces import BackendCompiler, ModuleChunker, SourceLocator, SourceTransformer
from ..core.units import Module, OutputItem, OutputTarget, OutstandingSet, PendingRecordTable, SourceUnit
from ..services.transform import run_transformers
from .metrics import CompileStatistics, StatisticsSnapshot
from .pipeline import ArtifactIndexer, ProcessPipeline, StreamReader
from .relocator import OutputRelocator, RelocationResult, move_file, substitute_prefix
from .scheduler import ChunkScheduler, CompilationChunk
from .session import CompileSession, async_delete
from .task import CompilePass, PassResult, PassStatus

logger = logging.getLogger(__name__)


class DependencyFixpointDriver:
    """
    Drives compile -> find affected -> recompile for one operation.

    A driver instance compiles once; create a new one per operation so
    per-operation caches never leak between invocations.

    Terminal policy:
    - process launch failure: CompilerError, nothing partial reported
    - dependency cache corruption during analysis: rebuild requested for
      the next invocation, CacheCorruptedError propagates
    - errors in a chunk stop further chunks but never revoke successes
      already recorded
    """

    def __init__(
        self,
        context: CompileContext,
        compiler: BackendCompiler,
        chunker: ModuleChunker,
        locator: SourceLocator,
        files: Iterable[SourceUnit],
        config: Optional[Config] = None,
        transformers: Sequence[SourceTransformer] = (),
    ):
        """
        Args:
            context: Compile context (project, cache, progress, scope)
            compiler: Backend compiler adapter
            chunker: Module grouping/ordering collaborator
            locator: Qualified name -> source unit lookup
            files: Units requested for compilation
            config: Configuration. If None, defaults are used.
            transformers: Optional source transformers run per chunk

        Raises:
            ValueError: invalid configuration
        """
        self._config = config or Config()
        error = self._config.validate()
        if error:
            raise ValueError(error)

        self._context = context
        self._compiler = compiler
        self._chunker = chunker
        self._locator = locator
        self._transformers = list(transformers)
        self._files: List[SourceUnit] = list(dict.fromkeys(files))

        self._outstanding = OutstandingSet(self._files)
        self._succeeded: Set[SourceUnit] = set()
        self._output_items: List[OutputItem] = []
        self._passes: List[PassResult] = []
        self._statistics = CompileStatistics(context.progress)
        self._round = 0
        self._started = False

        # Per-operation components, created by compile()
        self._session: Optional[CompileSession] = None
        self._scheduler: Optional[ChunkScheduler] = None
        self._pipeline: Optional[ProcessPipeline] = None
        self._relocator: Optional[OutputRelocator] = None

    # Results

    @property
    def outstanding(self) -> List[SourceUnit]:
        """Units still requiring compilation, sorted by path."""
        return self._outstanding.to_list()

    @property
    def succeeded(self) -> Set[SourceUnit]:
        """Units confirmed error-free and relocated."""
        return set(self._succeeded)

    @property
    def output_items(self) -> List[OutputItem]:
        return list(self._output_items)

    @property
    def passes(self) -> List[PassResult]:
        return list(self._passes)

    @property
    def launched_passes(self) -> List[PassResult]:
        return [p for p in self._passes if p.launched]

    def statistics(self) -> StatisticsSnapshot:
        return self._statistics.snapshot()

    @property
    def session(self) -> Optional[CompileSession]:
        """Session of the last compile() call (temp and staging dir owner)."""
        return self._session

    # Operation

    def compile(self) -> List[OutputItem]:
        """
        Compile the requested units plus one round of in-scope dependents.

        Returns:
            OutputItems of every unit compiled and relocated without errors

        Raises:
            CompilerError: backend could not be started
            CacheCorruptedError: dependency analysis hit a corrupted cache
        """
        if self._started:
            raise RuntimeError("Driver already compiled; create a new one per operation")
        self._started = True

        session = CompileSession(self._context.project)
        self._session = session
        self._scheduler = ChunkScheduler(self._context, self._chunker, session)
        self._pipeline = ProcessPipeline(
            self._context, self._compiler, self._config, self._statistics, self._locator
        )
        self._relocator = OutputRelocator(self._context, session)

        dependent: Set[SourceUnit] = set()
        try:
            if self._files:
                self._compile_modules(self._scheduler.group_by_module(self._files))

            if not self._context.is_canceled() and self._context.error_count == 0:
                dependent = self._find_dependent_files()
                self._outstanding.add_all(dependent - self._succeeded)

                in_scope = [unit for unit in dependent if self._context.in_scope(unit)]
                if in_scope:
                    self._round = 1
                    self._compile_modules(self._scheduler.group_by_module(in_scope))

        except CacheCorruptedError as e:
            self._context.request_rebuild_next_time(str(e))
            raise
        except PermissionError as e:
            raise CompilerError(f"Compiler not started: {e}") from e
        except OSError as e:
            raise CompilerError(f"Process not started:\n{e}") from e
        except ValueError as e:
            raise CompilerError(str(e)) from e
        finally:
            self._cleanup(session, dependent)

        self._outstanding.discard_all(self._succeeded)
        self._accept_artifactless_sources()
        return list(self._output_items)

    def _compile_modules(self, module_to_units: Dict[Module, Set[SourceUnit]]) -> None:
        for chunk in self._scheduler.plan(module_to_units):
            if self._context.is_canceled():
                logger.info("Compilation canceled before chunk %s", chunk.module_names)
                return

            run_transformers(self._transformers, chunk, self._session, self._context)
            self._statistics.set_module(chunk.module_names)

            targets = self._scheduler.targets_for(chunk)
            try:
                for target in targets:
                    self._compile_pass(chunk, target)
                    if self._context.error_count > 0:
                        return
            finally:
                for target in targets:
                    if target.staging:
                        self._session.schedule_delete(target.path)
                self._statistics.set_module(None)

    def _compile_pass(self, chunk: CompilationChunk, target: OutputTarget) -> None:
        chunk.set_filter(target.kind)
        compile_pass = CompilePass(
            modules=tuple(m.name for m in chunk.modules),
            target=target,
            round=self._round
        )
        selected = chunk.files_to_compile()
        result = PassResult(
            pass_id=compile_pass.id,
            status=PassStatus.PENDING,
            modules=compile_pass.modules,
            kind=compile_pass.kind,
            output_dir=target.path,
            round=compile_pass.round,
            units_selected=len(selected)
        )
        self._passes.append(result)

        if not selected:
            # Never invoke the backend with an empty source list
            result.status = PassStatus.SKIPPED
            return

        started_at = datetime.now(timezone.utc)
        result.started_at = started_at.isoformat()
        try:
            parser, handle = self._pipeline.launch(chunk, target.path)
        except Exception as e:
            result.status = PassStatus.FAILED
            result.error = str(e)
            raise

        records = PendingRecordTable()
        exit_code = 0
        try:
            exit_code = self._pipeline.run(handle, parser, records, target.path)
        except Exception as e:
            result.status = PassStatus.FAILED
            result.error = str(e)
            raise
        finally:
            result.exit_code = exit_code
            result.records_indexed = len(records)
            relocation = self._compile_finished(exit_code, chunk, target.path, records)
            result.units_succeeded = len(relocation.succeeded)
            result.items_emitted = len(relocation.items)

            completed_at = datetime.now(timezone.utc)
            result.completed_at = completed_at.isoformat()
            result.duration_ms = (completed_at - started_at).total_seconds() * 1000

        if result.status == PassStatus.PENDING:
            result.status = PassStatus.COMPLETED

    def _compile_finished(
        self,
        exit_code: int,
        chunk: CompilationChunk,
        output_dir: str,
        records: PendingRecordTable,
    ) -> RelocationResult:
        if exit_code != 0 and not self._context.is_canceled() and self._context.error_count == 0:
            self._context.report(
                Severity.ERROR,
                f"Compiler internal error. Process terminated with exit code {exit_code}"
            )
        self._compiler.process_terminated()

        relocation = self._relocator.relocate(chunk, output_dir, records)
        self._succeeded.update(relocation.succeeded)
        self._output_items.extend(relocation.items)
        self._outstanding.discard_all(relocation.succeeded)
        return relocation

    def _find_dependent_files(self) -> Set[SourceUnit]:
        progress = self._context.progress
        progress.set_text("Checking dependencies...")

        cache = self._context.dependency_cache
        dependent: Set[SourceUnit] = set()
        for identity in cache.find_dependents(set(self._succeeded)):
            qualified_name = cache.resolve(identity)
            unit = self._locator.find_source_file(qualified_name, cache.source_file_name(identity))
            if unit is None:
                logger.debug("No source file for %s found", qualified_name)
                continue
            if self._context.project.is_excluded(unit):
                continue
            dependent.add(unit)

        progress.set_text(f"Found {len(dependent)} dependent files")
        logger.info("Found %d dependent files", len(dependent))
        return dependent

    def _cleanup(self, session: CompileSession, dependent: Set[SourceUnit]) -> None:
        progress = self._context.progress
        progress.push_state()
        try:
            progress.set_text("Deleting temp files...")
            session.close()
            progress.set_text("Updating caches...")
            if self._succeeded or dependent:
                self._context.dependency_cache.update()
        finally:
            progress.pop_state()

    def _accept_artifactless_sources(self) -> None:
        """Accept outstanding sources that legitimately produce no artifact."""
        names = set(self._config.output.artifactless_sources)
        if not names or not len(self._outstanding):
            return
        compiled_with_errors = self._context.units_with_errors()
        for unit in self._outstanding.to_list():
            if unit.name in names and unit not in compiled_with_errors:
                self._output_items.append(OutputItem(None, None, unit))
                self._outstanding.discard(unit)


# Public API exports
__all__ = [
    # Main class
    "DependencyFixpointDriver",

    # Scheduling
    "ChunkScheduler",
    "CompilationChunk",

    # Pipeline
    "ProcessPipeline",
    "StreamReader",
    "ArtifactIndexer",

    # Relocation
    "OutputRelocator",
    "RelocationResult",
    "move_file",
    "substitute_prefix",

    # Session and bookkeeping
    "CompileSession",
    "async_delete",
    "CompileStatistics",
    "StatisticsSnapshot",
    "CompilePass",
    "PassResult",
    "PassStatus",
]
