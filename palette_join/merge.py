"""Merging many image palettes into one shared palette."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Sequence, Set, Tuple

from .image_io import SourceImage
from .palette_ops import MAX_PALETTE_SIZE, ColorTuple


logger = logging.getLogger(__name__)

SENTINEL_COLOR: ColorTuple = (255, 0, 255)
SENTINEL_SLOT = 0


@dataclass
class UnifiedPalette:
    """Shared palette: slot 0 is the sentinel, then colors in first-seen order.

    ``total_colors`` keeps counting distinct colors past ``capacity`` so the
    overflow can be reported; only the first ``capacity`` are addressable.
    """

    colors: List[ColorTuple] = field(default_factory=lambda: [SENTINEL_COLOR])
    total_colors: int = 1
    capacity: int = MAX_PALETTE_SIZE
    _slots: Dict[ColorTuple, int] = field(default_factory=dict, repr=False)
    _unplaced: Set[ColorTuple] = field(default_factory=set, repr=False)

    def __post_init__(self) -> None:
        for slot, color in enumerate(self.colors):
            self._slots.setdefault(color, slot)
        self.total_colors = max(self.total_colors, len(self.colors))

    def __len__(self) -> int:
        return len(self.colors)

    @property
    def overflow(self) -> bool:
        return self.total_colors > self.capacity

    def slot_of(self, color: ColorTuple) -> int | None:
        """Return the first slot holding exactly ``color``, or None."""

        return self._slots.get(tuple(color))

    def add(self, color: ColorTuple) -> int | None:
        """Register ``color``; return its slot, or None when past capacity."""

        color = tuple(color)
        existing = self._slots.get(color)
        if existing is not None:
            return existing
        if color in self._unplaced:
            return None
        slot: int | None = None
        if len(self.colors) < self.capacity:
            slot = len(self.colors)
            self.colors.append(color)
            self._slots[color] = slot
        else:
            self._unplaced.add(color)
        self.total_colors += 1
        return slot


def iter_palette_colors(
    images: Sequence[SourceImage],
) -> Iterator[Tuple[int, int, ColorTuple]]:
    """Yield ``(image_position, palette_index, color)`` in merge order.

    Invalid images are skipped. Both merging and remapping rely on this order.
    """

    for position, image in enumerate(images):
        if not image.valid or image.palette is None:
            continue
        for index, color in enumerate(image.palette.colors):
            yield position, index, color


def merge_palettes(
    images: Iterable[SourceImage], capacity: int = MAX_PALETTE_SIZE
) -> UnifiedPalette:
    images = list(images)
    unified = UnifiedPalette(capacity=capacity)
    for position, index, color in iter_palette_colors(images):
        before = unified.total_colors
        slot = unified.add(color)
        if unified.total_colors != before and slot is None:
            logger.debug(
                "No slot left for color %s (image %s index %s)", color, position, index
            )
    if unified.overflow:
        logger.warning(
            "The joined palette of these images resulted in %s colors, and a new "
            "palette can have %s colors at most.",
            unified.total_colors,
            unified.capacity,
        )
    else:
        logger.debug("Merged palette colors=%s", len(unified))
    return unified
