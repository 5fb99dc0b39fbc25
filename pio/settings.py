from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional, Tuple

from .modes import DEFAULT_TOLERANCE


@dataclass(frozen=True)
class OptimizeSettings:
    """
    All user-configurable knobs for a run.

    We keep this as a pure data object (no logic) so:
    - it's easy to test
    - easy to load from JSON (see load_settings)
    - every call gets its own values instead of shared defaults
    """

    # ----- Algorithms -----
    # Names from pio.algorithms.ALGORITHMS, tried in this order.
    # Order matters: on a size tie the earlier algorithm's output is kept.
    algorithms: Tuple[str, ...] = ("pillow",)

    # ----- Lint -----
    # A file is flagged only if some algorithm saves MORE than this many bytes.
    tolerance: int = DEFAULT_TOLERANCE

    # ----- Discovery -----
    recursive: bool = True
    extensions: Tuple[str, ...] = (".png",)

    # ----- Concurrency -----
    # Files processed at once. Algorithms for one file always run one by one.
    jobs: int = 4


def _is_int(value) -> bool:
    # bool is an int subclass; "jobs": true is not a count
    return isinstance(value, int) and not isinstance(value, bool)


def _is_names(value) -> bool:
    return isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value)


def validate(s: OptimizeSettings) -> OptimizeSettings:
    if not _is_int(s.tolerance) or s.tolerance < 0:
        raise ValueError(f"tolerance must be an integer >= 0, got {s.tolerance!r}")
    if not _is_int(s.jobs) or s.jobs < 1:
        raise ValueError(f"jobs must be an integer >= 1, got {s.jobs!r}")
    if not isinstance(s.recursive, bool):
        raise ValueError(f"recursive must be true or false, got {s.recursive!r}")
    if not _is_names(s.algorithms):
        raise ValueError(f"algorithms must be a list of names, got {s.algorithms!r}")
    if not _is_names(s.extensions) or not s.extensions:
        raise ValueError(f"extensions must be a non-empty list, got {s.extensions!r}")
    return s


def load_settings(path: Path, base: Optional[OptimizeSettings] = None) -> OptimizeSettings:
    """
    Overlay the keys of a JSON object onto `base` (defaults if None).

    Example file:
      {"algorithms": ["optipng", "pillow"], "tolerance": 64, "jobs": 2}
    """
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")

    known = {f.name for f in fields(OptimizeSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"{path}: unknown settings: {', '.join(unknown)}")

    for key in ("algorithms", "extensions"):
        if key in data:
            # a bare string would otherwise split into characters
            if not _is_names(data[key]):
                raise ValueError(f"{path}: {key} must be a list of strings")
            data[key] = tuple(data[key])

    return validate(replace(base or OptimizeSettings(), **data))
