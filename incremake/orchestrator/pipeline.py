"""
ProcessPipeline — Runs one backend invocation with concurrent indexing

Implements the producer/consumer pair of a chunk/target pass:
- StreamReader: consumes the compiler's line stream, reports diagnostics
  and enqueues every "artifact written" notification without waiting
  for the indexer
- ArtifactIndexer: dequeues artifact paths, parses their metadata through
  the dependency cache and records (source name, relative path, path)

The two workers share nothing but a bounded FIFO. Shutdown order:
1. wait for process exit (interrupt -> destroy, keep last exit code)
2. join StreamReader
3. stop ArtifactIndexer; it drains the queue before exiting
4. join ArtifactIndexer
5. surface captured worker errors

Only after step 5 may the record table be read.
"""

import logging
import queue
import threading
from typing import Optional, Tuple

from ..config import Config
from ..core.context import CompileContext
from ..core.diagnostics import ArtifactWritten, Diagnostic, Severity, SourceProcessed
from ..core.errors import BadArtifactFormatError, CacheCorruptedError
from ..core.interfaces import BackendCompiler, OutputParser, SourceLocator
from ..core.units import (
    PendingRecord, PendingRecordTable, SourceUnit, is_under,
    relative_path_to_source, to_system_independent,
)
from ..services.process import TERMINATION_MARKER, ProcessHandle, launch_embedded, launch_external
from .metrics import CompileStatistics
from .scheduler import CompilationChunk

logger = logging.getLogger(__name__)


class ArtifactIndexer(threading.Thread):
    """
    Consumer: turns artifact paths into pending records.

    Never exits merely because the queue is momentarily empty; exits once
    stop() was called and the queue is drained, on cache corruption, or
    on any other failure while indexing (kept in `crash`).
    """

    def __init__(
        self,
        artifacts: "queue.Queue[str]",
        records: PendingRecordTable,
        context: CompileContext,
        statistics: CompileStatistics,
        output_dir: str,
        config: Config,
        locator: Optional[SourceLocator] = None,
    ):
        super().__init__(name="incremake-artifact-indexer", daemon=True)
        self._artifacts = artifacts
        self._records = records
        self._context = context
        self._cache = context.dependency_cache
        self._statistics = statistics
        self._output_dir = output_dir
        self._config = config
        self._locator = locator
        self._stopped = threading.Event()
        self.error: Optional[CacheCorruptedError] = None
        self.crash: Optional[Exception] = None

    @property
    def failed(self) -> bool:
        """True once the indexer can no longer consume the queue."""
        if self.error is not None or self.crash is not None:
            return True
        return self.ident is not None and not self.is_alive()

    def stop(self) -> None:
        """Accept no new work; exit once the queue is drained."""
        self._stopped.set()

    def run(self) -> None:
        backoff = self._config.pipeline.idle_backoff
        try:
            while self._should_proceed():
                try:
                    path = self._artifacts.get(timeout=backoff)
                except queue.Empty:
                    continue
                self._process(path)
        except CacheCorruptedError as e:
            self.error = e
        except Exception as e:
            logger.debug("Artifact indexer failed: %r", e)
            self.crash = e

    def _should_proceed(self) -> bool:
        if self.failed:
            return False
        return not self._stopped.is_set() or not self._artifacts.empty()

    def _process(self, path: str) -> None:
        try:
            identity = self._cache.reparse_artifact(path)
            source_name = self._cache.source_file_name(identity)
            qualified_name = self._cache.resolve(identity)
            relative_path = "/" + relative_path_to_source(qualified_name, source_name)
            logger.debug(
                "Registering [source_name, relative_path, path] = [%s; %s; %s]",
                source_name, relative_path, path
            )
            self._records.add(PendingRecord(source_name, relative_path, path))
        except BadArtifactFormatError as e:
            detail = str(e)
            if detail:
                message = f"Bad artifact format: {detail}\n{path}"
            else:
                message = f"Bad artifact format:\n{path}"
            self._context.report(Severity.ERROR, message, self._owner_of(path))
        finally:
            self._statistics.artifact_indexed()

    def _owner_of(self, path: str) -> Optional[SourceUnit]:
        """Source unit declaring the artifact, derived from its path."""
        if self._locator is None:
            return None
        artifact = to_system_independent(path)
        output_dir = to_system_independent(self._output_dir).rstrip("/")
        if not is_under(artifact, output_dir):
            return None
        relative = artifact[len(output_dir) + 1:]
        suffix = self._config.output.artifact_suffix
        if relative.endswith(suffix):
            relative = relative[:-len(suffix)]
        # Nested declarations live in their outermost declaration's source
        package, _, simple_name = relative.rpartition("/")
        outer_name = simple_name.split(self._config.output.nested_separator, 1)[0]
        qualified_name = f"{package.replace('/', '.')}.{outer_name}" if package else outer_name
        try:
            return self._locator.find_source_file(qualified_name, None)
        except CacheCorruptedError:
            return None


class StreamReader(threading.Thread):
    """
    Producer: parses the compiler stream and enqueues artifact paths.

    Keeps consuming the stream after a parse failure so the compiler never
    blocks on a full pipe; the failure is surfaced after the joins.
    """

    def __init__(
        self,
        handle: ProcessHandle,
        parser: OutputParser,
        artifacts: "queue.Queue[str]",
        indexer: ArtifactIndexer,
        context: CompileContext,
        statistics: CompileStatistics,
        config: Config,
    ):
        super().__init__(name="incremake-stream-reader", daemon=True)
        self._handle = handle
        self._parser = parser
        self._artifacts = artifacts
        self._indexer = indexer
        self._context = context
        self._statistics = statistics
        self._backoff = config.pipeline.idle_backoff
        self.enqueued = 0
        self.dropped = 0
        self.error: Optional[Exception] = None

    def run(self) -> None:
        try:
            for line in self._handle.lines():
                if line == TERMINATION_MARKER:
                    break
                if self.error is None:
                    self._consume(self._parser.parse_line, line)
            if self.error is None:
                self._consume(self._parser.finish)
        except OSError as e:
            self.error = e

    def _consume(self, produce, *args) -> None:
        try:
            for event in produce(*args):
                self._dispatch(event)
        except Exception as e:
            logger.debug("Output parser failed: %s", e)
            self.error = e

    def _dispatch(self, event) -> None:
        if isinstance(event, Diagnostic):
            self._context.add_diagnostic(event)
        elif isinstance(event, ArtifactWritten):
            self._enqueue(event.path)
        elif isinstance(event, SourceProcessed):
            self._statistics.file_processed()

    def _enqueue(self, path: str) -> None:
        # Bounded put that gives up once the indexer has failed
        while not self._indexer.failed:
            try:
                self._artifacts.put(path, timeout=self._backoff)
                self.enqueued += 1
                return
            except queue.Full:
                continue
        self.dropped += 1


class ProcessPipeline:
    """
    Launches the backend for one pass and runs the reader/indexer pair.

    Usage:
        pipeline = ProcessPipeline(context, compiler, config, statistics, locator)
        parser, handle = pipeline.launch(chunk, output_dir)
        records = PendingRecordTable()
        exit_code = pipeline.run(handle, parser, records, output_dir)
    """

    def __init__(
        self,
        context: CompileContext,
        compiler: BackendCompiler,
        config: Config,
        statistics: CompileStatistics,
        locator: Optional[SourceLocator] = None,
    ):
        self._context = context
        self._compiler = compiler
        self._config = config
        self._statistics = statistics
        self._locator = locator

    def launch(self, chunk: CompilationChunk, output_dir: str) -> Tuple[OutputParser, ProcessHandle]:
        """
        Start the backend for a chunk.

        Raises:
            OSError: process could not be started
            ValueError: invalid invocation
        """
        command = self._compiler.build_command(chunk, output_dir)
        parser = self._compiler.create_output_parser()
        if self._config.compiler.embedded:
            handle = launch_embedded(
                self._compiler.compile_in_process, command, self._config.compiler.main_marker
            )
        else:
            handle = launch_external(command)
        return parser, handle

    def run(
        self,
        handle: ProcessHandle,
        parser: OutputParser,
        records: PendingRecordTable,
        output_dir: str,
    ) -> int:
        """
        Drive a launched process to completion.

        Returns:
            Exit code (last known code if the wait was interrupted)
        """
        artifacts: "queue.Queue[str]" = queue.Queue(maxsize=self._config.pipeline.queue_size)
        indexer = ArtifactIndexer(
            artifacts, records, self._context, self._statistics,
            output_dir, self._config, self._locator
        )
        reader = StreamReader(
            handle, parser, artifacts, indexer,
            self._context, self._statistics, self._config
        )
        indexer.start()
        reader.start()

        try:
            exit_code = self._wait_for(handle)
        finally:
            reader.join()
            indexer.stop()
            indexer.join()
            handle.close()

        self._surface_errors(reader, indexer)
        return exit_code

    def _wait_for(self, handle: ProcessHandle) -> int:
        try:
            return handle.wait()
        except KeyboardInterrupt:
            logger.info("Compilation interrupted, terminating backend process")
            handle.destroy()
            self._context.progress.cancel()
            exit_code = handle.exit_code
            return exit_code if exit_code is not None else -1

    def _surface_errors(self, reader: StreamReader, indexer: ArtifactIndexer) -> None:
        if indexer.error is not None:
            self._context.request_rebuild_next_time(str(indexer.error))
        if indexer.crash is not None:
            self._context.report(
                Severity.ERROR,
                f"Artifact indexing failed: {indexer.crash!r}"
            )
        if reader.error is not None:
            self._context.report(Severity.ERROR, str(reader.error) or type(reader.error).__name__)
