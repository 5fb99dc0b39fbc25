from __future__ import annotations

import asyncio
import logging
import os
import shutil
import struct
import tempfile
from pathlib import Path
from typing import Callable, Dict, List, Sequence, Tuple

from PIL import Image
from PIL.PngImagePlugin import PngInfo

from .files import File
from .modes import Algorithm


logger = logging.getLogger(__name__)


class AlgorithmError(RuntimeError):
    """A compression algorithm could not produce a candidate."""


def _temp_path(src: Path) -> Path:
    # Same directory as the source so promoting the winner is a plain rename
    fd, tmp_name = tempfile.mkstemp(prefix="pio_", suffix=src.suffix, dir=str(src.parent))
    os.close(fd)
    return Path(tmp_name)


async def _candidate(tmp_path: Path) -> File:
    out = File(tmp_path)
    await out.load_size()
    return out


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# Colour chunks Pillow reads but does not write back; copied verbatim.
# pHYs goes through the dpi option instead.
RENDER_CHUNKS = (b"cHRM", b"gAMA", b"sBIT", b"sRGB")


def read_png_chunks(path: Path) -> List[Tuple[bytes, bytes]]:
    """Return (type, data) for every chunk up to the first IDAT."""
    with Path(path).open("rb") as f:
        if f.read(8) != PNG_SIGNATURE:
            raise AlgorithmError(f"{path} is not a PNG file")
        chunks: List[Tuple[bytes, bytes]] = []
        while True:
            head = f.read(8)
            if len(head) < 8:
                raise AlgorithmError(f"{path}: truncated PNG")
            length, cid = struct.unpack(">I4s", head)
            if cid == b"IDAT":
                return chunks
            data = f.read(length)
            f.read(4)  # crc
            chunks.append((cid, data))


def _build_save_kwargs(im: Image.Image, chunks: List[Tuple[bytes, bytes]], compress_level: int) -> dict:
    kwargs: dict = {"optimize": True, "compress_level": int(compress_level)}

    icc = im.info.get("icc_profile")
    if icc is not None:
        kwargs["icc_profile"] = icc

    transparency = im.info.get("transparency")
    if transparency is not None:
        kwargs["transparency"] = transparency

    exif = im.info.get("exif")
    if exif is not None:
        kwargs["exif"] = exif

    dpi = im.info.get("dpi")
    if dpi is not None:
        kwargs["dpi"] = dpi

    info = PngInfo()
    for cid, data in chunks:
        if cid in RENDER_CHUNKS:
            info.add(cid, data)
    if info.chunks:
        kwargs["pnginfo"] = info

    return kwargs


def _save_png(src: Path, dst: Path, compress_level: int) -> None:
    chunks = read_png_chunks(src)

    # IHDR: width, height, bit depth, ...
    bit_depth = chunks[0][1][8] if chunks and chunks[0][0] == b"IHDR" else 0
    if bit_depth == 16:
        raise AlgorithmError(f"{src}: 16-bit PNGs would be narrowed to 8 bits")

    with Image.open(src) as im:
        if getattr(im, "is_animated", False):
            raise AlgorithmError(f"{src}: animated PNGs would lose all but the first frame")
        im.load()
        # Pillow chooses encoder by format=... not extension alone
        im.save(dst, format="PNG", **_build_save_kwargs(im, chunks, compress_level))


def pillow_png(compress_level: int = 9) -> Algorithm:
    """
    Re-encode with Pillow's zlib PNG encoder.

    Refuses inputs Pillow cannot write back unchanged (APNG, 16-bit).
    """

    async def run(src: File) -> File:
        tmp_path = _temp_path(src.path)
        try:
            await asyncio.to_thread(_save_png, src.path, tmp_path, compress_level)
        except AlgorithmError:
            tmp_path.unlink(missing_ok=True)
            raise
        except Exception as e:
            tmp_path.unlink(missing_ok=True)
            raise AlgorithmError(f"pillow failed on {src.name}: {e}") from e
        return await _candidate(tmp_path)

    run.__name__ = "pillow"
    return run


async def _run_tool(cmd: List[str]) -> None:
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise AlgorithmError(f"{cmd[0]} is not installed") from e

    _, stderr = await proc.communicate()
    if proc.returncode != 0:
        msg = stderr.decode("utf-8", errors="replace").strip()
        raise AlgorithmError(f"{cmd[0]} exited with {proc.returncode}: {msg}")


def _binary_algorithm(
    name: str,
    build_cmd: Callable[[Path, Path], List[str]],
    copy_first: bool = False,
) -> Algorithm:
    """
    Wrap an external PNG optimizer.

    build_cmd gets (source, output) and returns the argv. Tools that only
    work in place get copy_first=True: the source is copied to the output
    path and the tool rewrites that copy.
    """

    async def run(src: File) -> File:
        tmp_path = _temp_path(src.path)
        try:
            if copy_first:
                await asyncio.to_thread(shutil.copyfile, src.path, tmp_path)
            await _run_tool(build_cmd(src.path, tmp_path))
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        return await _candidate(tmp_path)

    run.__name__ = name
    return run


def optipng(level: int = 2) -> Algorithm:
    return _binary_algorithm(
        "optipng",
        lambda src, out: ["optipng", f"-o{level}", "-quiet", "-clobber", "-out", str(out), str(src)],
    )


def pngcrush() -> Algorithm:
    return _binary_algorithm("pngcrush", lambda src, out: ["pngcrush", "-q", str(src), str(out)])


def zopflipng() -> Algorithm:
    return _binary_algorithm("zopflipng", lambda src, out: ["zopflipng", "-y", str(src), str(out)])


def advpng(level: int = 4) -> Algorithm:
    return _binary_algorithm(
        "advpng",
        lambda src, out: ["advpng", "-z", f"-{level}", "-q", str(out)],
        copy_first=True,
    )


ALGORITHMS: Dict[str, Callable[[], Algorithm]] = {
    "pillow": pillow_png,
    "optipng": optipng,
    "pngcrush": pngcrush,
    "zopflipng": zopflipng,
    "advpng": advpng,
}

# Algorithms backed by an executable that must be on PATH
BINARIES = frozenset({"optipng", "pngcrush", "zopflipng", "advpng"})


def available(name: str) -> bool:
    if name not in ALGORITHMS:
        return False
    return name not in BINARIES or shutil.which(name) is not None


def get_algorithms(names: Sequence[str]) -> List[Algorithm]:
    algorithms: List[Algorithm] = []
    for name in names:
        factory = ALGORITHMS.get(name.lower())
        if factory is None:
            raise ValueError(f"Unknown algorithm: {name}")
        algorithms.append(factory())
    logger.debug("Algorithms: %s", ", ".join(a.__name__ for a in algorithms))
    return algorithms
