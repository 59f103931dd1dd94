"""
incremake — Incremental compilation orchestrator

Schedules interdependent modules into ordered chunks, runs an opaque
backend compiler per chunk while indexing its artifacts concurrently,
relocates staged artifacts to their real output directories and keeps
the set of units still needing compilation exact.

Usage:
    from incremake import CompileContext, DependencyFixpointDriver

    context = CompileContext(project, dependency_cache, progress, scope)
    driver = DependencyFixpointDriver(context, backend, chunker, locator, units)
    items = driver.compile()
    still_dirty = driver.outstanding
"""

__version__ = "0.1.0"

# Core layer (data, contracts)
from .core.errors import IncremakeError, CompilerError, CacheCorruptedError, BadArtifactFormatError
from .core.units import (
    Module, SourceUnit, TargetKind, OutputTarget,
    PendingRecord, PendingRecordTable, OutputItem, OutstandingSet,
)
from .core.diagnostics import Severity, Diagnostic, ArtifactWritten, SourceProcessed
from .core.interfaces import (
    ProjectIndex, ModuleChunker, DependencyCache, SourceLocator,
    OutputParser, BackendCompiler, SourceTransformer, ProgressIndicator,
)
from .core.context import CompileContext, directory_scope, unit_scope

# Orchestration layer
from .orchestrator import (
    DependencyFixpointDriver, ChunkScheduler, CompilationChunk,
    ProcessPipeline, OutputRelocator, CompileSession, PassResult, PassStatus,
)

# Config and state (stay at root)
from .config import Config, ConfigManager, get_config, PipelineConfig, CompilerConfig, OutputConfig
from .state import BuildStateStore

__all__ = [
    # Core
    'IncremakeError', 'CompilerError', 'CacheCorruptedError', 'BadArtifactFormatError',
    'Module', 'SourceUnit', 'TargetKind', 'OutputTarget',
    'PendingRecord', 'PendingRecordTable', 'OutputItem', 'OutstandingSet',
    'Severity', 'Diagnostic', 'ArtifactWritten', 'SourceProcessed',
    'ProjectIndex', 'ModuleChunker', 'DependencyCache', 'SourceLocator',
    'OutputParser', 'BackendCompiler', 'SourceTransformer', 'ProgressIndicator',
    'CompileContext', 'directory_scope', 'unit_scope',
    # Orchestration
    'DependencyFixpointDriver', 'ChunkScheduler', 'CompilationChunk',
    'ProcessPipeline', 'OutputRelocator', 'CompileSession', 'PassResult', 'PassStatus',
    # Config and state
    'Config', 'ConfigManager', 'get_config', 'PipelineConfig', 'CompilerConfig', 'OutputConfig',
    'BuildStateStore',
]
