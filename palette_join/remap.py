"""Translating image pixel indices onto the shared palette."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

import numpy as np

from .image_io import SourceImage
from .merge import SENTINEL_SLOT, UnifiedPalette
from .palette_ops import PaletteError


logger = logging.getLogger(__name__)


class TranslationError(PaletteError):
    """A pixel index has no slot in the shared palette."""

    def __init__(self, path: Path | None, index: int, reason: str) -> None:
        self.path = path
        self.index = index
        super().__init__(f"{path}: palette index {index} {reason}")


@dataclass(slots=True)
class TranslationTable:
    """Original palette index -> shared palette slot, for indices in use."""

    mapping: Dict[int, int] = field(default_factory=dict)

    def __getitem__(self, index: int) -> int:
        return self.mapping[index]

    def __contains__(self, index: object) -> bool:
        return index in self.mapping

    def __len__(self) -> int:
        return len(self.mapping)

    def lookup_table(self) -> np.ndarray:
        lut = np.zeros(256, dtype=np.uint8)
        for src, dst in self.mapping.items():
            lut[src] = dst
        return lut


def _used_indices(pixels: np.ndarray) -> np.ndarray:
    """Distinct index values of ``pixels`` in order of first occurrence."""

    flat = pixels.ravel()
    values, first = np.unique(flat, return_index=True)
    return values[np.argsort(first, kind="stable")]


def resolve_index(image: SourceImage, index: int, unified: UnifiedPalette) -> int:
    if image.transparent_index is not None and index == image.transparent_index:
        return SENTINEL_SLOT
    palette = image.palette
    if palette is None or index >= palette.size:
        raise TranslationError(image.path, index, "is outside the image palette")
    color = palette.colors[index]
    slot = unified.slot_of(color)
    if slot is None:
        if unified.overflow:
            reason = f"uses color {color}, which did not fit in the joined palette"
        else:
            reason = f"uses color {color}, which is missing from the joined palette"
        raise TranslationError(image.path, index, reason)
    return slot


def build_translation_table(image: SourceImage, unified: UnifiedPalette) -> TranslationTable:
    """Resolve every index that occurs in ``image``'s pixels.

    The transparent index always maps to the sentinel slot. Unused palette
    entries are not resolved.
    """

    if image.pixels is None:
        raise ValueError(f"{image.path}: no pixel data to translate")
    table = TranslationTable()
    for value in _used_indices(image.pixels):
        index = int(value)
        table.mapping[index] = resolve_index(image, index, unified)
    logger.debug("Translation table %s entries=%s", image.path, len(table))
    return table


def apply_translation(pixels: np.ndarray, table: TranslationTable) -> np.ndarray:
    return table.lookup_table()[pixels]


def remap_image(image: SourceImage, unified: UnifiedPalette) -> np.ndarray:
    """Return ``image``'s pixels rewritten against ``unified``.

    The table is complete before any pixel changes, so a ``TranslationError``
    leaves the image untouched.
    """

    table = build_translation_table(image, unified)
    remapped = apply_translation(image.pixels, table)
    logger.debug(
        "Remapped %s size=%sx%s indices=%s",
        image.path,
        image.width,
        image.height,
        len(table),
    )
    return remapped
