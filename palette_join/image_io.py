"""Reading, writing and backing up indexed PNG files."""
from __future__ import annotations

import io
import logging
import os
import shutil
import struct
import tempfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Sequence, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from .palette_ops import (
    ColorTuple,
    ImagePalette,
    PaletteError,
    extract_palette,
    flatten_palette,
    read_gpl_palette,
)


logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
PNG_COLOR_TYPE_PALETTE = 3
BACKUP_SUFFIX = ".bak"

SourceKind = Literal["png", "gpl"]


class BackupError(OSError):
    """Raised when an input file could not be copied aside before rewriting."""


@dataclass(slots=True)
class SourceImage:
    """Decoded state of one input file."""

    path: Path
    kind: SourceKind = "png"
    palette: ImagePalette | None = None
    pixels: np.ndarray | None = None
    valid: bool = False
    error: str | None = None

    @property
    def width(self) -> int:
        return 0 if self.pixels is None else int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return 0 if self.pixels is None else int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def transparent_index(self) -> int | None:
        return None if self.palette is None else self.palette.transparent_index

    def release(self) -> None:
        """Drop the pixel buffer once the output is written or abandoned."""

        self.pixels = None


def _read_png_header(path: Path) -> Tuple[int, int]:
    """Return (bit_depth, color_type) from the IHDR chunk of ``path``."""

    with path.open("rb") as fh:
        head = fh.read(26)
    if len(head) < 8 or head[:8] != PNG_SIGNATURE:
        raise PaletteError("not a valid PNG file")
    if len(head) < 26 or head[12:16] != b"IHDR":
        raise PaletteError("truncated PNG header")
    return head[24], head[25]


def decode_image(path: Path) -> SourceImage:
    """Decode an 8-bit paletted PNG into palette, pixel indices and transparency.

    Raises ``PaletteError`` for unsupported or corrupt files and ``OSError``
    when the file cannot be read.
    """

    bit_depth, color_type = _read_png_header(path)
    if color_type != PNG_COLOR_TYPE_PALETTE or bit_depth != 8:
        raise PaletteError("only 8-bit paletted images are supported")
    try:
        with Image.open(path) as img:
            img.load()
            palette = extract_palette(img)
            width, height = img.size
            pixels = np.array(img, dtype=np.uint8)
    except (UnidentifiedImageError, SyntaxError, ValueError, EOFError) as exc:
        raise PaletteError(f"something went wrong while reading PNG file ({exc})") from exc

    if pixels.size and int(pixels.max()) >= palette.size:
        raise PaletteError(
            f"pixel index {int(pixels.max())} outside palette of {palette.size} colors"
        )
    logger.debug(
        "Decoded %s size=%sx%s colors=%s transparent=%s",
        path,
        width,
        height,
        palette.size,
        palette.transparent_index,
    )
    return SourceImage(path=path, kind="png", palette=palette, pixels=pixels, valid=True)


def load_source(path: Path) -> SourceImage:
    """Load any supported input, marking it invalid instead of raising."""

    suffix = path.suffix.lower()
    try:
        if suffix == ".png":
            return decode_image(path)
        if suffix == ".gpl":
            palette = read_gpl_palette(path)
            logger.debug("Read palette %s colors=%s", path, palette.size)
            return SourceImage(path=path, kind="gpl", palette=palette, valid=True)
        raise PaletteError("invalid image or palette")
    except (PaletteError, OSError) as exc:
        message = exc.strerror if isinstance(exc, OSError) and exc.strerror else str(exc)
        logger.warning("Skipping %s: %s", path, message)
        return SourceImage(
            path=path,
            kind="gpl" if suffix == ".gpl" else "png",
            valid=False,
            error=message,
        )


def _truncate_plte(data: bytes, entries: int) -> bytes:
    """Shorten the PLTE chunk to ``entries`` colors.

    Pillow pads the palette of an 8-bit image to 256 entries; the joined
    palette must be stored with exactly its own length.
    """

    out = [data[:8]]
    pos = 8
    while pos + 8 <= len(data):
        length, chunk_type = struct.unpack(">I4s", data[pos : pos + 8])
        body = data[pos + 8 : pos + 8 + length]
        end = pos + 12 + length
        if chunk_type == b"PLTE" and length > entries * 3:
            body = body[: max(1, entries) * 3]
            crc = zlib.crc32(chunk_type + body) & 0xFFFFFFFF
            out.append(struct.pack(">I4s", len(body), chunk_type) + body + struct.pack(">I", crc))
        else:
            out.append(data[pos:end])
        pos = end
    return b"".join(out)


def encode_image(
    path: Path,
    colors: Sequence[ColorTuple],
    pixels: np.ndarray,
    transparent_slot: int | None = 0,
) -> None:
    """Write ``pixels`` as an 8-bit indexed PNG using ``colors`` as its palette.

    At most one slot is marked transparent. The file is written next to the
    target first and moved into place, so a failed write leaves ``path`` intact.
    """

    if pixels.ndim != 2:
        raise ValueError("pixel buffer must be two-dimensional")
    height, width = pixels.shape
    image = Image.frombytes("P", (width, height), np.ascontiguousarray(pixels, dtype=np.uint8).tobytes())
    image.putpalette(flatten_palette(colors))
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        buffer = io.BytesIO()
        params = {} if transparent_slot is None else {"transparency": transparent_slot}
        image.save(buffer, format="PNG", bits=8, **params)
        tmp_path.write_bytes(_truncate_plte(buffer.getvalue(), len(colors)))
        if path.exists():
            shutil.copymode(path, tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    logger.debug(
        "Encoded %s size=%sx%s colors=%s transparent=%s",
        path,
        width,
        height,
        len(colors),
        transparent_slot,
    )


def backup_path_for(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


def backup_file(path: Path) -> Path:
    """Copy ``path`` to ``<path>.bak``; an existing backup is never overwritten."""

    dest = backup_path_for(path)
    try:
        with path.open("rb") as src, dest.open("xb") as dst:
            try:
                shutil.copyfileobj(src, dst)
                dst.flush()
                os.fsync(dst.fileno())
            except OSError:
                dst.close()
                dest.unlink(missing_ok=True)
                raise
        shutil.copystat(path, dest)
    except OSError as exc:
        raise BackupError(f"cannot back up {path} to {dest}: {exc.strerror or exc}") from exc
    logger.debug("Backed up %s -> %s", path, dest)
    return dest
