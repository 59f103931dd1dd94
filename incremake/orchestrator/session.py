"""
CompileSession — Per-operation caches and temp directory ownership

Scoped to one compile operation, never process-wide:
- module -> real output directory / test output directory (lazy, None cached)
- module -> temp directory for transformed source copies
- staging directories of multi-module chunks

Temp and staging directories are removed with a best-effort background
delete that never blocks the next chunk.
"""

import shutil
import tempfile
import threading
from typing import Dict, List, Optional

from ..core.interfaces import ProjectIndex
from ..core.units import Module, paths_equal


def async_delete(path: str) -> threading.Thread:
    """Delete a directory tree on a daemon thread. Errors are ignored."""
    thread = threading.Thread(
        target=shutil.rmtree,
        args=(path,),
        kwargs={"ignore_errors": True},
        name="incremake-async-delete",
        daemon=True
    )
    thread.start()
    return thread


class CompileSession:
    """
    Lazily populated caches for one compile operation.

    Not thread-safe: used from the orchestrating thread only.
    """

    def __init__(self, project: ProjectIndex):
        self._project = project
        self._output_dirs: Dict[Module, Optional[str]] = {}
        self._test_output_dirs: Dict[Module, Optional[str]] = {}
        self._temp_dirs: Dict[Module, str] = {}
        self._deletes: List[threading.Thread] = []

    def output_dir(self, module: Module) -> Optional[str]:
        if module not in self._output_dirs:
            self._output_dirs[module] = self._project.output_dir(module)
        return self._output_dirs[module]

    def test_output_dir(self, module: Module) -> Optional[str]:
        if module not in self._test_output_dirs:
            self._test_output_dirs[module] = self._project.test_output_dir(module)
        return self._test_output_dirs[module]

    def compiles_tests_separately(self, module: Module) -> bool:
        """True when the module's tests go to a different output directory."""
        test_output = self.test_output_dir(module)
        if test_output is None:
            return False
        return not paths_equal(test_output, self.output_dir(module))

    def temp_dir(self, module: Module) -> str:
        """Temp directory of a module, created on first use."""
        temp_dir = self._temp_dirs.get(module)
        if temp_dir is None:
            temp_dir = tempfile.mkdtemp(prefix=f"{self._project.name}_{module.name}_")
            self._temp_dirs[module] = temp_dir
        return temp_dir

    def create_staging_dir(self) -> str:
        """Fresh directory a multi-module chunk compiles into."""
        return tempfile.mkdtemp(prefix="compile", suffix="output")

    def schedule_delete(self, path: str) -> None:
        self._deletes.append(async_delete(path))

    def close(self) -> None:
        """Schedule deletion of temp directories and drop all caches."""
        for temp_dir in self._temp_dirs.values():
            self.schedule_delete(temp_dir)
        self._temp_dirs.clear()
        self._output_dirs.clear()
        self._test_output_dirs.clear()

    def wait_for_deletes(self, timeout: Optional[float] = None) -> None:
        """Block until scheduled deletions finish (used by tests and shutdown)."""
        for thread in self._deletes:
            thread.join(timeout=timeout)
        self._deletes = [t for t in self._deletes if t.is_alive()]
