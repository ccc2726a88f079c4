"""Palette helpers: extraction from indexed images and GIMP palette text."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple

from PIL import Image


ColorTuple = Tuple[int, int, int]

MAX_PALETTE_SIZE = 256
GPL_HEADER = "GIMP Palette"


@dataclass(slots=True)
class ImagePalette:
    """Ordered palette of an indexed image (or palette file)."""

    colors: List[ColorTuple]
    transparent_index: int | None = None

    @property
    def size(self) -> int:
        return len(self.colors)


class PaletteError(RuntimeError):
    """Raised when palette processing fails."""


def ensure_indexed(image: Image.Image) -> Image.Image:
    if image.mode != "P":
        raise PaletteError(
            f"Expected indexed image (mode 'P'), got mode {image.mode!r}"
        )
    return image


def _transparent_index(value: object) -> int | None:
    if isinstance(value, (bytes, bytearray)):
        # per-index alpha table: first fully transparent entry wins
        try:
            return next(i for i, alpha in enumerate(value) if alpha == 0)
        except StopIteration:
            return None
    if isinstance(value, tuple):
        value = value[0]
    if isinstance(value, int):
        return value
    return None


def extract_palette(image: Image.Image) -> ImagePalette:
    """Return every palette entry and the transparent index of ``image``."""

    ensure_indexed(image)
    palette = image.getpalette()
    if not palette:
        raise PaletteError("Image does not contain palette data")
    colors: List[ColorTuple] = [
        (palette[i], palette[i + 1], palette[i + 2])
        for i in range(0, len(palette) - 2, 3)
    ]
    if len(colors) > MAX_PALETTE_SIZE:
        raise PaletteError(f"Palette has {len(colors)} entries (max {MAX_PALETTE_SIZE})")
    transparent = _transparent_index(image.info.get("transparency"))
    if transparent is not None and not 0 <= transparent < MAX_PALETTE_SIZE:
        transparent = None
    return ImagePalette(colors=colors, transparent_index=transparent)


def flatten_palette(colors: Sequence[ColorTuple]) -> List[int]:
    flat: List[int] = []
    for color in colors[:MAX_PALETTE_SIZE]:
        flat.extend(color)
    return flat


def _parse_component(token: str, path: Path, line_no: int) -> int:
    try:
        value = int(token)
    except ValueError:
        raise PaletteError(f"{path}:{line_no}: expected an integer, got {token!r}") from None
    if not 0 <= value <= 255:
        raise PaletteError(f"{path}:{line_no}: color component {value} out of range")
    return value


def parse_gpl_palette(lines: Iterable[str], path: Path = Path("<palette>")) -> ImagePalette:
    """Parse GIMP palette text.

    The first line must be the ``GIMP Palette`` magic. ``Name:``/``Columns:``
    headers, ``#`` comments and blank lines are ignored; every other line is
    ``R G B [name]``.
    """

    iterator = iter(lines)
    first = next(iterator, "").strip()
    if first != GPL_HEADER:
        raise PaletteError(f"{path}: missing '{GPL_HEADER}' header")
    colors: List[ColorTuple] = []
    for line_no, raw in enumerate(iterator, start=2):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith(("Name:", "Columns:")):
            continue
        tokens = line.split(None, 3)
        if len(tokens) < 3:
            raise PaletteError(f"{path}:{line_no}: expected 'R G B [name]'")
        r, g, b = (_parse_component(token, path, line_no) for token in tokens[:3])
        colors.append((r, g, b))
    if len(colors) > MAX_PALETTE_SIZE:
        raise PaletteError(f"{path}: {len(colors)} colors exceed the {MAX_PALETTE_SIZE}-entry limit")
    return ImagePalette(colors=colors)


def read_gpl_palette(path: Path) -> ImagePalette:
    """Load a GIMP ``.gpl`` palette file."""

    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise PaletteError(f"{path}: not a text palette ({exc})") from exc
    return parse_gpl_palette(text.splitlines(), path)


def format_gpl_palette(
    colors: Sequence[ColorTuple],
    *,
    name: str = "palettejoin",
    columns: int = 16,
    entry_name: str = "Untitled",
) -> str:
    lines = [GPL_HEADER, f"Name: {name}", f"Columns: {columns}", "#"]
    for r, g, b in colors:
        lines.append(f"{r:3d} {g:3d} {b:3d} {entry_name}")
    return "\n".join(lines) + "\n"


def write_gpl_palette(path: Path, colors: Sequence[ColorTuple]) -> None:
    path.write_text(format_gpl_palette(colors), encoding="utf-8")
