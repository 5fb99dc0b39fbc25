from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class OptimReport:
    """What optim() returns when the file actually got smaller."""
    name: str
    saved_bytes: int


@dataclass(frozen=True)
class FileOutcome:
    """
    Output of running one mode over a single image.

    error is set when the file could not be processed; saved_bytes is only
    meaningful for optimize runs and flagged only for lint runs.
    """
    path: Path
    src_bytes: int
    saved_bytes: int = 0
    flagged: bool = False
    error: Optional[str] = None

    @property
    def saved_percent(self) -> float:
        if self.src_bytes <= 0:
            return 0.0
        return (self.saved_bytes / self.src_bytes) * 100.0


@dataclass(frozen=True)
class BatchSummary:
    total_files: int
    optimized: int
    flagged: int
    failed: int
    total_src_bytes: int
    saved_bytes: int

    @property
    def saved_percent(self) -> float:
        if self.total_src_bytes <= 0:
            return 0.0
        return (self.saved_bytes / self.total_src_bytes) * 100.0
