"""
Interfaces — Contracts of the collaborators the orchestrator drives

The orchestrator owns scheduling, the process pipeline and relocation.
Everything else is supplied by the host:
- ProjectIndex: modules, output directories, source roots, classification
- ModuleChunker: ordered (possibly cyclic) module groups
- DependencyCache: artifact metadata and "what depends on X"
- SourceLocator: qualified name -> source unit
- BackendCompiler / OutputParser: the opaque compiler and its output format
- SourceTransformer: optional pre-compile rewriting of sources
- ProgressIndicator: cancellation flag and status texts
"""

import threading
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence, Set, TYPE_CHECKING, Union

from .diagnostics import ArtifactWritten, Diagnostic, SourceProcessed
from .units import Module, SourceUnit, TargetKind

if TYPE_CHECKING:
    from ..orchestrator.scheduler import CompilationChunk
    from .context import CompileContext


StreamEvent = Union[Diagnostic, ArtifactWritten, SourceProcessed]


class ProjectIndex(ABC):
    """Host view of modules, roots and output directories."""

    name: str = "project"

    @abstractmethod
    def module_for(self, unit: SourceUnit) -> Optional[Module]:
        """Owning module, or None when the unit has been invalidated."""
        pass

    @abstractmethod
    def is_test_source(self, unit: SourceUnit) -> bool:
        pass

    @abstractmethod
    def output_dir(self, module: Module) -> Optional[str]:
        pass

    @abstractmethod
    def test_output_dir(self, module: Module) -> Optional[str]:
        pass

    @abstractmethod
    def source_roots(self, module: Module, kind: TargetKind) -> List[str]:
        """Source roots of a module that hold sources of the given kind."""
        pass

    @abstractmethod
    def package_prefix(self, root: str) -> str:
        """Dotted package name assigned to a source root ('' for none)."""
        pass

    @abstractmethod
    def iter_source_units(self, root: str) -> Iterable[SourceUnit]:
        """All compilable source units below a root."""
        pass

    def is_excluded(self, unit: SourceUnit) -> bool:
        """Whether the unit is excluded from compilation."""
        return False

    def refresh_files(self, paths: Sequence[str]) -> None:
        """Notify the host that output files changed on disk."""
        pass


class ModuleChunker(ABC):
    """Groups modules into dependency-ordered chunks."""

    @abstractmethod
    def sorted_chunks(self, modules: Sequence[Module]) -> List[Sequence[Module]]:
        """
        Ordered module groups.

        Each group is a single module or a dependency cycle; a group
        appears after every group it depends on.
        """
        pass


class DependencyCache(ABC):
    """Class/source relationships persisted between builds."""

    @abstractmethod
    def reparse_artifact(self, path: str) -> int:
        """
        Parse an artifact's metadata and register it as newly compiled.

        Returns:
            Identity of the declaration the artifact implements

        Raises:
            BadArtifactFormatError: artifact is malformed
            CacheCorruptedError: cache cannot be updated
        """
        pass

    @abstractmethod
    def source_file_name(self, identity: int) -> str:
        """Declared source file name for an identity."""
        pass

    @abstractmethod
    def resolve(self, identity: int) -> str:
        """Fully-qualified name for an identity."""
        pass

    @abstractmethod
    def find_dependents(self, compiled: Set[SourceUnit]) -> Iterable[int]:
        """Identities of declarations depending on what was compiled."""
        pass

    @abstractmethod
    def update(self) -> None:
        """Persist changes gathered during the operation."""
        pass


class SourceLocator(ABC):
    """Finds the source unit declaring a qualified name."""

    @abstractmethod
    def find_source_file(self, qualified_name: str, source_name: Optional[str]) -> Optional[SourceUnit]:
        pass


class OutputParser(ABC):
    """Turns backend output lines into stream events."""

    @abstractmethod
    def parse_line(self, line: str) -> Iterable[StreamEvent]:
        pass

    def finish(self) -> Iterable[StreamEvent]:
        """Events buffered until the end of the stream."""
        return ()


class BackendCompiler(ABC):
    """Adapter around the opaque backend compiler."""

    @abstractmethod
    def build_command(self, chunk: "CompilationChunk", output_dir: str) -> List[str]:
        """Command line compiling the chunk's selected units into output_dir."""
        pass

    @abstractmethod
    def create_output_parser(self) -> OutputParser:
        pass

    def compile_in_process(self, arguments: List[str], writer) -> int:
        """
        Run the compiler inside this process.

        Args:
            arguments: Compiler arguments (launcher tokens stripped)
            writer: Text stream the compiler prints its output to

        Returns:
            Compiler exit code
        """
        raise NotImplementedError(f"{type(self).__name__} cannot compile in-process")

    def process_terminated(self) -> None:
        """Called after every backend process has finished."""
        pass


class SourceTransformer(ABC):
    """Rewrites copies of sources before they are compiled."""

    @abstractmethod
    def is_transformable(self, unit: SourceUnit) -> bool:
        pass

    @abstractmethod
    def transform(self, context: "CompileContext", copy: SourceUnit, original: SourceUnit) -> bool:
        """
        Transform the copy in place.

        Returns:
            True if the copy should be compiled instead of the original
        """
        pass


class ProgressIndicator:
    """
    Cancellation flag and status texts.

    Usable as-is; hosts override the setters to drive their UI.
    """

    def __init__(self):
        self._canceled = threading.Event()
        self._states: List[tuple] = []
        self.text = ""
        self.text2 = ""

    def is_canceled(self) -> bool:
        return self._canceled.is_set()

    def cancel(self) -> None:
        self._canceled.set()

    def set_text(self, text: str) -> None:
        self.text = text

    def set_text2(self, text: str) -> None:
        self.text2 = text

    def push_state(self) -> None:
        self._states.append((self.text, self.text2))

    def pop_state(self) -> None:
        if self._states:
            self.text, self.text2 = self._states.pop()
