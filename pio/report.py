from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .results import BatchSummary, FileOutcome


@dataclass(frozen=True)
class FileReport:
    path: str
    src_bytes: int
    saved_bytes: int
    saved_percent: float
    flagged: bool
    error: Optional[str]


@dataclass(frozen=True)
class BatchReport:
    created_utc: str
    mode: str
    summary: dict
    files: List[FileReport]


CSV_FIELDS = ["path", "src_bytes", "saved_bytes", "saved_percent", "flagged", "error"]


def build_report(outcomes: List[FileOutcome], summary: BatchSummary, mode: str = "optimize") -> BatchReport:
    created_utc = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    files: List[FileReport] = []
    for o in outcomes:
        files.append(
            FileReport(
                path=str(o.path),
                src_bytes=o.src_bytes,
                saved_bytes=o.saved_bytes,
                saved_percent=round(o.saved_percent, 2),
                flagged=o.flagged,
                error=o.error,
            )
        )

    summary_dict = {
        "total_files": summary.total_files,
        "optimized": summary.optimized,
        "flagged": summary.flagged,
        "failed": summary.failed,
        "total_src_bytes": summary.total_src_bytes,
        "saved_bytes": summary.saved_bytes,
        "saved_percent": round(summary.saved_percent, 2),
    }

    return BatchReport(created_utc=created_utc, mode=mode, summary=summary_dict, files=files)


def save_report_json(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(asdict(report), f, indent=2, ensure_ascii=False)


def save_report_csv(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for row in report.files:
            writer.writerow(asdict(row))
