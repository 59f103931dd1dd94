"""
Services — Process handles and source transformation.
"""

from .process import (
    ProcessHandle, ExternalProcess, EmbeddedProcess, LineWriter,
    TERMINATION_MARKER, launch_external, launch_embedded, embedded_arguments,
)
from .transform import run_transformers, create_file_copy

__all__ = [
    'ProcessHandle', 'ExternalProcess', 'EmbeddedProcess', 'LineWriter',
    'TERMINATION_MARKER', 'launch_external', 'launch_embedded', 'embedded_arguments',
    'run_transformers', 'create_file_copy',
]
