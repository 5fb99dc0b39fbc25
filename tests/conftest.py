from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from pio.files import File


def write_file(path: Path, size: int, fill: bytes = b"o") -> Path:
    path.write_bytes(fill * size)
    return path


class FakeAlgorithms:
    """Builds algorithms that write candidates of a chosen size."""

    def __init__(self, root: Path):
        self.root = root
        self.created: List[Path] = []
        self.calls: List[str] = []

    def sized(self, size: int, fill: bytes = b"x"):
        async def algorithm(src: File) -> File:
            self.calls.append(src.name)
            out = self.root / f"candidate_{len(self.created)}.png"
            write_file(out, size, fill)
            self.created.append(out)
            return File(out, size)

        return algorithm

    def failing(self, exc: Exception):
        async def algorithm(src: File) -> File:
            self.calls.append(src.name)
            raise exc

        return algorithm

    def leftovers(self) -> List[Path]:
        return [p for p in self.created if p.exists()]


@pytest.fixture
def fake(tmp_path: Path) -> FakeAlgorithms:
    return FakeAlgorithms(tmp_path)


@pytest.fixture
def original(tmp_path: Path) -> Path:
    return write_file(tmp_path / "image.png", 1000)
