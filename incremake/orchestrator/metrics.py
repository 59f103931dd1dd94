"""
CompileStatistics — Progress counters for a compile operation

Counts source files the backend reported as processed and artifacts the
indexer parsed, and publishes them as the progress indicator's
secondary text:

    Files: 12 - Classes: 30 - Module: core, util

Updated concurrently by the stream reader (files) and the artifact
indexer (classes).
"""

import threading
from dataclasses import dataclass
from typing import Optional

from ..core.interfaces import ProgressIndicator


@dataclass
class StatisticsSnapshot:
    """Point-in-time copy of the counters."""
    files: int = 0
    classes: int = 0
    module_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "files": self.files,
            "classes": self.classes,
            "module": self.module_name
        }


class CompileStatistics:
    """Thread-safe file/artifact counters."""

    def __init__(self, progress: ProgressIndicator):
        self._progress = progress
        self._lock = threading.Lock()
        self._files = 0
        self._classes = 0
        self._module_name: Optional[str] = None

    def file_processed(self) -> None:
        with self._lock:
            self._files += 1
            text = self._format()
        self._progress.set_text2(text)

    def artifact_indexed(self) -> None:
        with self._lock:
            self._classes += 1
            text = self._format()
        self._progress.set_text2(text)

    def set_module(self, module_name: Optional[str]) -> None:
        with self._lock:
            self._module_name = module_name

    def snapshot(self) -> StatisticsSnapshot:
        with self._lock:
            return StatisticsSnapshot(
                files=self._files,
                classes=self._classes,
                module_name=self._module_name
            )

    def _format(self) -> str:
        """Must hold lock."""
        text = f"Files: {self._files} - Classes: {self._classes}"
        if self._module_name is not None:
            text += f" - Module: {self._module_name}"
        return text
