"""
Core — Data model, collaborator contracts and the compile context.
"""

from .errors import IncremakeError, CompilerError, CacheCorruptedError, BadArtifactFormatError
from .units import (
    Module, SourceUnit, TargetKind, OutputTarget,
    PendingRecord, PendingRecordTable, OutputItem, OutstandingSet,
    paths_equal, is_under, relative_path_to_source, to_system_independent,
)
from .diagnostics import Severity, Diagnostic, ArtifactWritten, SourceProcessed, DiagnosticsCollector
from .interfaces import (
    ProjectIndex, ModuleChunker, DependencyCache, SourceLocator,
    OutputParser, BackendCompiler, SourceTransformer, ProgressIndicator, StreamEvent,
)
from .context import CompileContext, directory_scope, unit_scope

__all__ = [
    # Errors
    'IncremakeError', 'CompilerError', 'CacheCorruptedError', 'BadArtifactFormatError',
    # Data model
    'Module', 'SourceUnit', 'TargetKind', 'OutputTarget',
    'PendingRecord', 'PendingRecordTable', 'OutputItem', 'OutstandingSet',
    'paths_equal', 'is_under', 'relative_path_to_source', 'to_system_independent',
    # Diagnostics
    'Severity', 'Diagnostic', 'ArtifactWritten', 'SourceProcessed', 'DiagnosticsCollector',
    # Collaborators
    'ProjectIndex', 'ModuleChunker', 'DependencyCache', 'SourceLocator',
    'OutputParser', 'BackendCompiler', 'SourceTransformer', 'ProgressIndicator', 'StreamEvent',
    # Context
    'CompileContext', 'directory_scope', 'unit_scope',
]
