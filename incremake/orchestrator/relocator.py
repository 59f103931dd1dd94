"""
OutputRelocator — Matches staged artifacts to sources and moves them

Runs once per pass, after the pipeline has been joined:
- every source unit under the pass's source roots is looked up in the
  record table by name
- a record matches only if its declared source-relative path equals the
  unit's package-relative path (normalized string comparison); name
  alone never matches
- matched artifacts move from the staging prefix to the module's real
  output directory (atomic move, then mkdirs + retry, then copy + delete)
- a unit succeeds only with a confirmed relocation and no error diagnostic

The record table is cleared on completion.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from ..core.context import CompileContext
from ..core.units import (
    OutputItem, PendingRecordTable, SourceUnit, is_under,
    paths_equal, to_system_independent,
)
from .scheduler import CompilationChunk
from .session import CompileSession

logger = logging.getLogger(__name__)


@dataclass
class RelocationResult:
    """Outcome of relocating one pass."""
    succeeded: Set[SourceUnit] = field(default_factory=set)
    items: List[OutputItem] = field(default_factory=list)
    refreshed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class OutputRelocator:
    """Moves matched artifacts to their real output directories."""

    def __init__(self, context: CompileContext, session: CompileSession):
        self._context = context
        self._project = context.project
        self._session = session

    def relocate(
        self,
        chunk: CompilationChunk,
        output_dir: str,
        records: PendingRecordTable,
    ) -> RelocationResult:
        """
        Relocate the artifacts recorded for one pass.

        Args:
            chunk: Chunk whose current filter selects the source roots
            output_dir: Directory the pass compiled into
            records: Record table filled by the artifact indexer
        """
        result = RelocationResult()
        try:
            compiled_with_errors = self._context.units_with_errors()
            output_dir_path = to_system_independent(output_dir)
            logger.debug("Record table contains entries: %d", len(records))
            for root in chunk.source_roots():
                package_prefix = self._project.package_prefix(root)
                logger.debug(
                    "Building output items for %s; output dir = %s; package prefix = \"%s\"",
                    root, output_dir_path, package_prefix
                )
                for unit in self._project.iter_source_units(root):
                    self._relocate_unit(
                        unit, root, package_prefix, output_dir_path,
                        records, compiled_with_errors, result
                    )
            if result.refreshed:
                self._project.refresh_files(list(result.refreshed))
        finally:
            records.clear()
        return result

    def _relocate_unit(
        self,
        unit: SourceUnit,
        root: str,
        package_prefix: str,
        output_dir: str,
        records: PendingRecordTable,
        compiled_with_errors: Set[SourceUnit],
        result: RelocationResult,
    ) -> None:
        candidates = records.get(unit.name)
        if not candidates:
            return

        prefix = package_prefix.replace(".", "/") + "/" if package_prefix else ""
        relative = to_system_independent(os.path.relpath(unit.path, root))
        file_path = "/" + prefix + relative

        for record in candidates:
            if not paths_equal(file_path, record.source_relative_path):
                continue
            staged_path = to_system_independent(record.staged_path)
            location = self._move_to_real_location(output_dir, staged_path, unit, result)
            if location is None:
                logger.debug("Failed to move to real location: %s; from %s", staged_path, output_dir)
                result.failed.append(staged_path)
                continue
            if unit in compiled_with_errors:
                continue
            result.succeeded.add(unit)
            result.items.append(OutputItem(location[0], location[1], unit))
            logger.debug(
                "Added output item: [output_dir; output_path; source] = [%s; %s; %s]",
                location[0], location[1], unit.path
            )

    def _move_to_real_location(
        self,
        staging_dir: str,
        staged_path: str,
        unit: SourceUnit,
        result: RelocationResult,
    ) -> Optional[Tuple[str, str]]:
        """
        Move one artifact below the unit's real output directory.

        Returns:
            (real output dir, real artifact path), or None if not moved
        """
        module = self._context.module_for(unit)
        if module is None:
            # Source was invalidated meanwhile, it needs recompilation
            return None

        if self._project.is_test_source(unit):
            real_output_dir = self._session.test_output_dir(module)
        else:
            real_output_dir = self._session.output_dir(module)
        if real_output_dir is None:
            return None
        real_output_dir = to_system_independent(real_output_dir)

        if paths_equal(staging_dir, real_output_dir):
            result.refreshed.append(staged_path)
            return real_output_dir, staged_path

        if not is_under(staged_path, staging_dir):
            logger.debug("Artifact %s is outside of %s", staged_path, staging_dir)
            return None

        real_path = substitute_prefix(staged_path, staging_dir, real_output_dir)
        if not move_file(staged_path, real_path):
            return None
        result.refreshed.append(real_path)
        return real_output_dir, real_path


def substitute_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    """Replace the directory prefix of path: ('/stage/pkg/Foo.class', '/stage', '/real') -> '/real/pkg/Foo.class'."""
    return new_prefix.rstrip("/") + path[len(old_prefix.rstrip("/")):]


def move_file(source: str, destination: str) -> bool:
    """
    Move a file, creating parent directories on demand.

    Tries an atomic move; on failure creates the destination's parent
    directories and retries once; finally falls back to copy and delete
    (e.g. across mount points).
    """
    try:
        os.replace(source, destination)
        return True
    except OSError:
        pass

    parent = os.path.dirname(destination)
    if parent:
        try:
            os.makedirs(parent, exist_ok=True)
            os.replace(source, destination)
            return True
        except OSError:
            pass

    try:
        shutil.copyfile(source, destination)
        os.remove(source)
        return True
    except OSError as e:
        logger.info("Cannot move %s to %s: %s", source, destination, e)
        return False
