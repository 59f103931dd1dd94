"""
BuildStateStore — Build state persisted between invocations

Holds the rebuild-next-time request raised when the dependency cache is
found corrupted. The current operation is aborted; the next invocation
reads the request and performs a full rebuild.

Stored as JSON (orjson) in <state_dir>/state.json, written atomically.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import orjson


class BuildStateStore:
    """File-backed build state."""

    STATE_FILE = "state.json"

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)

    @property
    def path(self) -> Path:
        return self.state_dir / self.STATE_FILE

    def load(self) -> Dict[str, Any]:
        """Load state; a missing or malformed file reads as empty."""
        if not self.path.exists():
            return {}
        try:
            data = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def request_rebuild(self, reason: str) -> None:
        """Record that the next invocation must rebuild everything."""
        data = self.load()
        data["rebuild"] = {
            "reason": reason,
            "requested_at": datetime.now(timezone.utc).isoformat(),
        }
        self._save(data)

    @property
    def rebuild_requested(self) -> bool:
        return "rebuild" in self.load()

    @property
    def rebuild_reason(self) -> Optional[str]:
        rebuild = self.load().get("rebuild")
        if not isinstance(rebuild, dict):
            return None
        return rebuild.get("reason")

    def consume_rebuild_request(self) -> Optional[str]:
        """
        Read and clear a pending rebuild request.

        Returns:
            The recorded reason, or None if no rebuild was requested
        """
        data = self.load()
        rebuild = data.pop("rebuild", None)
        if rebuild is None:
            return None
        self._save(data)
        if isinstance(rebuild, dict):
            return rebuild.get("reason") or ""
        return ""

    def _save(self, data: Dict[str, Any]) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        tmp_path.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))
        os.replace(tmp_path, self.path)
