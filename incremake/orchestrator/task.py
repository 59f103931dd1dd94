"""
CompilePass — Bookkeeping for one chunk/target pass

Every pass the driver plans gets an id and, once finished, a PassResult:
- SKIPPED: nothing selected for the target, no process launched
- COMPLETED: the backend ran and relocation finished
- FAILED: the pass raised before relocation could complete

Results are kept for the caller's inspection after the operation.
"""

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import orjson
import xxhash

from ..core.units import OutputTarget, TargetKind


class PassStatus(Enum):
    """Pass lifecycle states."""
    PENDING = "pending"
    SKIPPED = "skipped"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class CompilePass:
    """One backend invocation over a chunk for one output target."""
    id: str = field(default_factory=lambda: _generate_pass_id())
    modules: Tuple[str, ...] = ()
    target: Optional[OutputTarget] = None
    round: int = 0  # 0 = requested scope, 1 = dependency round
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def kind(self) -> TargetKind:
        return self.target.kind if self.target else TargetKind.COMBINED

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        if isinstance(other, CompilePass):
            return self.id == other.id
        return False


@dataclass
class PassResult:
    """Outcome of one pass."""
    pass_id: str
    status: PassStatus
    modules: Tuple[str, ...] = ()
    kind: TargetKind = TargetKind.COMBINED
    output_dir: Optional[str] = None
    round: int = 0

    exit_code: Optional[int] = None
    units_selected: int = 0
    records_indexed: int = 0
    units_succeeded: int = 0
    items_emitted: int = 0
    error: Optional[str] = None

    # Timing
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: Optional[float] = None

    @property
    def launched(self) -> bool:
        return self.status in (PassStatus.COMPLETED, PassStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pass_id": self.pass_id,
            "status": self.status.value,
            "modules": list(self.modules),
            "kind": self.kind.value,
            "output_dir": self.output_dir,
            "round": self.round,
            "exit_code": self.exit_code,
            "units_selected": self.units_selected,
            "records_indexed": self.records_indexed,
            "units_succeeded": self.units_succeeded,
            "items_emitted": self.items_emitted,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_ms": self.duration_ms
        }

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_dict())


_counter = itertools.count()


def _generate_pass_id() -> str:
    """Short unique pass id (xxhash of timestamp and sequence)."""
    seed = f"{datetime.now(timezone.utc).isoformat()}-{next(_counter)}"
    return xxhash.xxh64(seed.encode()).hexdigest()[:12]
