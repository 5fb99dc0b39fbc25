"""
Modes
=====

optim() keeps the smallest output of a list of compression algorithms in
place of the original file. lint() only checks whether any algorithm would
shrink the file by more than a tolerance.

An algorithm is an async callable taking the source File and returning a
new candidate File with its size known. Algorithms always run against the
original file, one after another, in list order.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Sequence

from .files import File, move
from .results import OptimReport


logger = logging.getLogger(__name__)

Algorithm = Callable[[File], Awaitable[File]]

DEFAULT_TOLERANCE = 0


async def _min_file(raw: File, compressed: File) -> File:
    """
    Overwrite raw with compressed if it is strictly smaller, else remove
    compressed. Returns the handle of whichever is kept.
    """
    if compressed.size < raw.size:
        await move(compressed.name, raw.name)
        return File(raw.name, compressed.size)

    await compressed.remove()
    return raw


async def _is_smaller_after_compression(raw: File, compressed: File, tolerance: int) -> bool:
    await compressed.remove()
    return raw.size - compressed.size > tolerance


async def optim(file: File, algorithms: Sequence[Algorithm]) -> Optional[OptimReport]:
    await file.load_size()

    best = file
    for algorithm in algorithms:
        compressed = await algorithm(file)
        logger.debug("%s: candidate %s is %d bytes (best %d)", file.name, compressed.name, compressed.size, best.size)
        best = await _min_file(best, compressed)

    saved_bytes = file.size - best.size
    if saved_bytes > 0:
        return OptimReport(name=file.name, saved_bytes=saved_bytes)
    return None


async def lint(
    file: File,
    algorithms: Sequence[Algorithm],
    tolerance: int = DEFAULT_TOLERANCE,
) -> str:
    """
    Return file.name if some algorithm saves more than `tolerance` bytes,
    otherwise "". Stops at the first algorithm that does. Candidates are
    always removed and the original is never touched.
    """
    if tolerance < 0:
        raise ValueError(f"tolerance must be >= 0, got {tolerance}")

    await file.load_size()

    for algorithm in algorithms:
        compressed = await algorithm(file)
        if await _is_smaller_after_compression(file, compressed, tolerance):
            logger.debug("%s: improvable by %d bytes", file.name, file.size - compressed.size)
            return file.name

    return ""
