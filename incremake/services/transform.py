"""
Source Transformers — Pre-compile rewriting of chunk sources

For each transformer, every transformable unit of the chunk is copied
into its module's temp directory and transformed there. Successfully
transformed copies are compiled instead of the originals; the originals
stay untouched. Artifacts of a copy still carry the original's name and
package-relative path, so relocation matches them to the original.
"""

import logging
import shutil
from pathlib import Path
from typing import Dict, Sequence, TYPE_CHECKING

from ..core.context import CompileContext
from ..core.interfaces import SourceTransformer
from ..core.units import SourceUnit

if TYPE_CHECKING:
    from ..orchestrator.scheduler import CompilationChunk
    from ..orchestrator.session import CompileSession

logger = logging.getLogger(__name__)


def run_transformers(
    transformers: Sequence[SourceTransformer],
    chunk: "CompilationChunk",
    session: "CompileSession",
    context: CompileContext,
) -> int:
    """
    Apply transformers to a chunk.

    Returns:
        Number of units now compiled from a transformed copy
    """
    if not transformers:
        return 0

    logger.debug("Running transforming compilers...")
    for transformer in transformers:
        copies: Dict[SourceUnit, SourceUnit] = {}
        for module in chunk.modules:
            for unit in chunk.all_files(module):
                if not transformer.is_transformable(unit):
                    continue
                try:
                    copies[unit] = create_file_copy(Path(session.temp_dir(module)), unit)
                except OSError as e:
                    logger.debug("Skipping transform of %s: %s", unit.path, e)

        for module in chunk.modules:
            for unit in chunk.all_files(module):
                copy = copies.get(unit)
                if copy is not None and transformer.transform(context, copy, unit):
                    chunk.substitute(unit, copy)

    return chunk.substitution_count


def create_file_copy(temp_dir: Path, unit: SourceUnit) -> SourceUnit:
    """
    Copy a source into temp_dir, keeping its file name.

    When the name is taken, the copy goes into the first 'dirN'
    subdirectory that does not hold that name yet.
    """
    file_name = unit.name
    target_dir = temp_dir
    if (target_dir / file_name).exists():
        idx = 0
        while True:
            candidate = temp_dir / f"dir{idx}"
            idx += 1
            if not candidate.exists():
                candidate.mkdir(parents=True)
                target_dir = candidate
                break
            if not (candidate / file_name).exists():
                target_dir = candidate
                break

    destination = target_dir / file_name
    shutil.copyfile(unit.path, destination)
    return SourceUnit(str(destination))
