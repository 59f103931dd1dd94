"""
Units — Data model for one compile operation

Defines the value types that flow between scheduler, pipeline and
relocator:
- SourceUnit: reference to a source file owned by the project index
- Module: owner of source units and output directories
- OutputTarget: (directory, kind) a backend pass writes into
- PendingRecord / PendingRecordTable: indexed artifacts awaiting relocation
- OutputItem: a confirmed (directory, path, unit) result
- OutstandingSet: units still requiring compilation

Design principles:
- Value types are frozen and hashable
- Path comparison is normalized, never identity-based
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Set


class TargetKind(Enum):
    """Which sources of a module a pass compiles."""
    MAIN = "main"            # production sources only
    TEST = "test"            # test sources only
    COMBINED = "combined"    # everything, single output directory


@dataclass(frozen=True)
class Module:
    """A named group of source roots sharing output directories."""
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class SourceUnit:
    """
    Reference to a source file.

    Not owned: module ownership and test classification are answered by
    the project index.
    """
    path: str

    @property
    def name(self) -> str:
        """File name without directories (the declared source name)."""
        return self.path.replace("\\", "/").rsplit("/", 1)[-1]

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class OutputTarget:
    """A directory one backend pass writes into."""
    path: str
    kind: TargetKind = TargetKind.COMBINED
    staging: bool = False  # freshly created, deleted after the chunk


@dataclass(frozen=True)
class PendingRecord:
    """An indexed artifact awaiting match-and-relocate."""
    source_name: str
    source_relative_path: str
    staged_path: str


@dataclass(frozen=True)
class OutputItem:
    """
    Confirmed result of one compiled and relocated unit.

    output_dir and output_path are None for sources that legitimately
    produce no artifact.
    """
    output_dir: Optional[str]
    output_path: Optional[str]
    unit: SourceUnit


class PendingRecordTable:
    """
    Records indexed during one pass, keyed by source name.

    Several records may share a name (nested declarations, or equally
    named sources in different packages). Written by the artifact indexer
    only, read by the relocator after the indexer has been joined.
    """

    def __init__(self):
        self._records: Dict[str, Set[PendingRecord]] = {}

    def add(self, record: PendingRecord) -> None:
        self._records.setdefault(record.source_name, set()).add(record)

    def get(self, source_name: str) -> List[PendingRecord]:
        """Records for a source name, in stable order."""
        records = self._records.get(source_name)
        if not records:
            return []
        return sorted(records, key=lambda r: (r.source_relative_path, r.staged_path))

    def names(self) -> List[str]:
        return sorted(self._records)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return sum(len(records) for records in self._records.values())

    def __iter__(self) -> Iterator[PendingRecord]:
        for name in self.names():
            yield from self.get(name)


class OutstandingSet:
    """
    Live working set of units still requiring compilation.

    Grows on dependency-affected discovery, shrinks on confirmed success.
    """

    def __init__(self, units: Iterable[SourceUnit] = ()):
        self._units: Set[SourceUnit] = set(units)

    def add_all(self, units: Iterable[SourceUnit]) -> None:
        self._units.update(units)

    def discard_all(self, units: Iterable[SourceUnit]) -> None:
        self._units.difference_update(units)

    def discard(self, unit: SourceUnit) -> None:
        self._units.discard(unit)

    def to_list(self) -> List[SourceUnit]:
        """Units sorted by path for stable reporting."""
        return sorted(self._units, key=lambda u: u.path)

    def __contains__(self, unit: object) -> bool:
        return unit in self._units

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[SourceUnit]:
        return iter(self.to_list())


def to_system_independent(path: str) -> str:
    """Use forward slashes regardless of platform."""
    return path.replace(os.sep, "/")


def paths_equal(first: Optional[str], second: Optional[str]) -> bool:
    """
    Compare two paths as strings after normalization.

    Case-insensitive where the platform's file system is.
    """
    if first is None or second is None:
        return first is None and second is None
    return _normalize(first) == _normalize(second)


def is_under(path: str, directory: str) -> bool:
    """Check whether path lies inside directory (string-based)."""
    prefix = _normalize(directory).rstrip("/") + "/"
    return _normalize(path).startswith(prefix)


def relative_path_to_source(qualified_name: str, source_name: str) -> str:
    """
    Package-relative path of the source declaring qualified_name.

    'pkg.sub.Foo$Bar' declared in 'Foo.java' -> 'pkg/sub/Foo.java'
    """
    package, _, _ = qualified_name.rpartition(".")
    if not package:
        return source_name
    return package.replace(".", "/") + "/" + source_name


def _normalize(path: str) -> str:
    normalized = os.path.normcase(os.path.normpath(path))
    return normalized.replace("\\", "/")
