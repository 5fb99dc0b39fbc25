from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

from .algorithms import get_algorithms
from .files import File
from .modes import Algorithm, lint, optim
from .results import BatchSummary, FileOutcome
from .settings import OptimizeSettings


logger = logging.getLogger(__name__)

T = TypeVar("T")


def iter_images(
    paths: Sequence[Path],
    recursive: bool = True,
    extensions: Sequence[str] = (".png",),
) -> Iterable[Path]:
    """
    Yield supported image paths from a mixture of files and directories.

    Each file is yielded once, however many inputs reach it, so no two
    runs ever write the same path. Leftover candidates (pio_*) from an
    interrupted run are skipped.
    """
    exts = {e.lower() for e in extensions}
    seen: Set[Path] = set()

    def fresh(f: Path) -> bool:
        key = f.resolve()
        if key in seen:
            return False
        seen.add(key)
        return True

    for p in paths:
        p = Path(p)

        if p.is_file():
            if p.suffix.lower() in exts and fresh(p):
                yield p
            continue

        if p.is_dir():
            pattern = "**/*" if recursive else "*"
            for f in sorted(p.glob(pattern)):
                if not f.is_file():
                    continue
                if f.suffix.lower() not in exts:
                    continue
                if f.name.startswith("pio_"):
                    continue
                if fresh(f):
                    yield f


def _saved_before_failure(f: File) -> int:
    # optim() may have promoted a winner before a later algorithm failed
    if f.size is None:
        return 0
    try:
        return max(0, f.size - f.path.stat().st_size)
    except OSError:
        return 0


async def _optimize_one(path: Path, algorithms: Sequence[Algorithm]) -> FileOutcome:
    f = File(path)
    try:
        report = await optim(f, algorithms)
    except Exception as e:
        saved = _saved_before_failure(f)
        error = str(e)
        if saved:
            error += f" (partially optimized: {saved:,} bytes saved before the failure)"
        logger.error(f"{path} failed: {error}")
        return FileOutcome(path=path, src_bytes=f.size or 0, saved_bytes=saved, error=error)

    saved = report.saved_bytes if report else 0
    if saved:
        logger.info(f"{path}: saved {saved:,} bytes")
    return FileOutcome(path=path, src_bytes=f.size, saved_bytes=saved)


async def _lint_one(path: Path, algorithms: Sequence[Algorithm], tolerance: int) -> FileOutcome:
    f = File(path)
    try:
        name = await lint(f, algorithms, tolerance=tolerance)
    except Exception as e:
        logger.error(f"{path} failed: {e}")
        return FileOutcome(path=path, src_bytes=f.size or 0, error=str(e))

    return FileOutcome(path=path, src_bytes=f.size, flagged=bool(name))


async def _gather_limited(
    jobs: int,
    items: Sequence[Path],
    work: Callable[[Path], Awaitable[T]],
    progress_callback: Optional[Callable[[int, int], None]],
) -> List[T]:
    sem = asyncio.Semaphore(jobs)
    total = len(items)
    done = 0

    async def guarded(p: Path) -> T:
        nonlocal done
        async with sem:
            result = await work(p)
        done += 1
        if progress_callback:
            progress_callback(done, total)
        return result

    # gather keeps input order in its result list
    return list(await asyncio.gather(*(guarded(p) for p in items)))


def _summarize(outcomes: Sequence[FileOutcome]) -> BatchSummary:
    return BatchSummary(
        total_files=len(outcomes),
        optimized=sum(1 for o in outcomes if o.saved_bytes > 0),
        flagged=sum(1 for o in outcomes if o.flagged),
        failed=sum(1 for o in outcomes if o.error is not None),
        total_src_bytes=sum(o.src_bytes for o in outcomes),
        saved_bytes=sum(o.saved_bytes for o in outcomes),
    )


async def optimize_batch(
    inputs: Sequence[Path],
    settings: OptimizeSettings,
    algorithms: Optional[Sequence[Algorithm]] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> Tuple[List[FileOutcome], BatchSummary]:
    """
    Run optim() over every image found in `inputs`.

    Files run concurrently (up to settings.jobs); a failing file is
    recorded in its outcome and does not stop the others.
    """
    if algorithms is None:
        algorithms = get_algorithms(settings.algorithms)

    image_list = list(iter_images(inputs, recursive=settings.recursive, extensions=settings.extensions))
    logger.info(f"Optimizing {len(image_list)} files, {settings.jobs} at a time")

    outcomes = await _gather_limited(
        settings.jobs,
        image_list,
        lambda p: _optimize_one(p, algorithms),
        progress_callback,
    )
    return outcomes, _summarize(outcomes)


async def lint_batch(
    inputs: Sequence[Path],
    settings: OptimizeSettings,
    algorithms: Optional[Sequence[Algorithm]] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> Tuple[List[FileOutcome], BatchSummary]:
    if algorithms is None:
        algorithms = get_algorithms(settings.algorithms)

    image_list = list(iter_images(inputs, recursive=settings.recursive, extensions=settings.extensions))
    logger.info(f"Linting {len(image_list)} files (tolerance {settings.tolerance} bytes)")

    outcomes = await _gather_limited(
        settings.jobs,
        image_list,
        lambda p: _lint_one(p, algorithms, settings.tolerance),
        progress_callback,
    )
    return outcomes, _summarize(outcomes)


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Drive a batch coroutine from synchronous code such as the CLI."""
    return asyncio.run(coro)
