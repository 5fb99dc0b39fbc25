import asyncio
import struct
import zlib
from pathlib import Path

import pytest
from PIL import Image

from pio.algorithms import (
    AlgorithmError,
    _binary_algorithm,
    available,
    get_algorithms,
    pillow_png,
    read_png_chunks,
)
from pio.files import File
from pio.modes import lint, optim


def _uncompressed_png(path: Path) -> Path:
    im = Image.new("RGB", (200, 120), (30, 120, 200))
    im.save(path, format="PNG", compress_level=0)
    return path


def test_pillow_writes_candidate_next_to_source(tmp_path: Path):
    src = _uncompressed_png(tmp_path / "flat.png")
    before = src.read_bytes()

    candidate = asyncio.run(pillow_png()(File(src)))

    out = Path(candidate.name)
    assert out.parent == tmp_path
    assert out.name.startswith("pio_")
    assert candidate.size == out.stat().st_size
    assert candidate.size < len(before)
    assert src.read_bytes() == before


def test_pillow_optim_is_lossless(tmp_path: Path):
    src = _uncompressed_png(tmp_path / "flat.png")
    with Image.open(src) as im:
        pixels = list(im.getdata())

    report = asyncio.run(optim(File(src), get_algorithms(["pillow"])))

    assert report is not None and report.saved_bytes > 0
    with Image.open(src) as im:
        assert list(im.getdata()) == pixels
    assert list(tmp_path.glob("pio_*")) == []


def test_pillow_lint_flags_uncompressed(tmp_path: Path):
    src = _uncompressed_png(tmp_path / "flat.png")

    assert asyncio.run(lint(File(src), get_algorithms(["pillow"]))) == str(src)
    assert list(tmp_path.glob("pio_*")) == []


def test_pillow_rejects_non_image(tmp_path: Path):
    src = tmp_path / "broken.png"
    src.write_bytes(b"not a png at all")

    with pytest.raises(AlgorithmError):
        asyncio.run(pillow_png()(File(src)))

    assert list(tmp_path.glob("pio_*")) == []


def test_missing_binary_raises_and_cleans_up(tmp_path: Path):
    src = _uncompressed_png(tmp_path / "flat.png")
    algo = _binary_algorithm("ghost", lambda s, o: ["pio-no-such-tool-xyz", str(s), str(o)])

    with pytest.raises(AlgorithmError, match="not installed"):
        asyncio.run(algo(File(src)))

    assert list(tmp_path.glob("pio_*")) == []


def test_get_algorithms_keeps_order():
    algorithms = get_algorithms(["optipng", "pillow", "zopflipng"])

    assert [a.__name__ for a in algorithms] == ["optipng", "pillow", "zopflipng"]


def test_get_algorithms_unknown_name():
    with pytest.raises(ValueError, match="Unknown algorithm"):
        get_algorithms(["pillow", "jpegtran"])


def test_available():
    assert available("pillow")
    assert not available("jpegtran")


def _chunk(cid: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + cid + data + struct.pack(">I", zlib.crc32(cid + data) & 0xFFFFFFFF)


def _raw_png(path: Path, bit_depth: int, extra: bytes = b"") -> Path:
    """Write a stored (uncompressed) RGB PNG by hand; Pillow cannot write 16-bit RGB."""
    width, height = 40, 30
    row_len = width * 3 * bit_depth // 8
    raw = b"".join(b"\x00" + bytes((x + y) % 256 for x in range(row_len)) for y in range(height))
    ihdr = struct.pack(">IIBBBBB", width, height, bit_depth, 2, 0, 0, 0)
    path.write_bytes(
        b"\x89PNG\r\n\x1a\n"
        + _chunk(b"IHDR", ihdr)
        + extra
        + _chunk(b"IDAT", zlib.compress(raw, 0))
        + _chunk(b"IEND", b"")
    )
    return path


def test_pillow_refuses_animated_png(tmp_path: Path):
    src = tmp_path / "anim.png"
    frames = [Image.new("RGB", (64, 64), c) for c in [(255, 0, 0), (0, 255, 0), (0, 0, 255)]]
    frames[0].save(src, format="PNG", save_all=True, append_images=frames[1:], compress_level=0)
    before = src.read_bytes()

    with pytest.raises(AlgorithmError, match="animated"):
        asyncio.run(optim(File(src), [pillow_png()]))

    assert src.read_bytes() == before
    with Image.open(src) as im:
        assert im.n_frames == 3
    assert list(tmp_path.glob("pio_*")) == []


def test_pillow_refuses_16_bit(tmp_path: Path):
    src = _raw_png(tmp_path / "deep.png", bit_depth=16)
    before = src.read_bytes()

    with pytest.raises(AlgorithmError, match="16-bit"):
        asyncio.run(optim(File(src), [pillow_png()]))

    assert src.read_bytes() == before
    assert read_png_chunks(src)[0][1][8] == 16
    assert list(tmp_path.glob("pio_*")) == []


def test_pillow_keeps_colour_and_density_chunks(tmp_path: Path):
    extra = (
        _chunk(b"gAMA", struct.pack(">I", 45455))
        + _chunk(b"sRGB", b"\x00")
        + _chunk(b"pHYs", struct.pack(">IIB", 2835, 2835, 1))
    )
    src = _raw_png(tmp_path / "tagged.png", bit_depth=8, extra=extra)
    with Image.open(src) as im:
        pixels = im.tobytes()

    report = asyncio.run(optim(File(src), [pillow_png()]))

    assert report is not None and report.saved_bytes > 0
    chunks = dict(read_png_chunks(src))
    assert chunks[b"gAMA"] == struct.pack(">I", 45455)
    assert chunks[b"sRGB"] == b"\x00"
    assert chunks[b"pHYs"] == struct.pack(">IIB", 2835, 2835, 1)
    assert chunks[b"IHDR"][8] == 8
    with Image.open(src) as im:
        assert im.tobytes() == pixels
