from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, Union


PathLike = Union[str, Path]


class File:
    """
    A named file on disk with a lazily loaded size.

    The size is read once by load_size() and never re-queried. Build a new
    File to observe a changed size.
    """

    def __init__(self, name: PathLike, size: Optional[int] = None) -> None:
        self.name = str(name)
        self.size = size

    @property
    def path(self) -> Path:
        return Path(self.name)

    async def load_size(self) -> None:
        st = await asyncio.to_thread(self.path.stat)
        self.size = st.st_size

    async def remove(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)

    def __repr__(self) -> str:
        return f"File({self.name!r}, size={self.size!r})"


async def move(src: PathLike, dst: PathLike) -> None:
    # Path.replace overwrites dst (atomic when both are on one filesystem)
    await asyncio.to_thread(Path(src).replace, Path(dst))
