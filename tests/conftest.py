"""Shared fixtures for palettejoin tests."""
from pathlib import Path

import numpy as np
import pytest

from palette_join.image_io import SourceImage, encode_image
from palette_join.palette_ops import ImagePalette

WHITE = (255, 255, 255)
BLACK = (0, 0, 0)
RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
MAGENTA = (255, 0, 255)


def make_source(colors, pixels, transparent=None, path="mem.png"):
    """Build a decoded image without touching the filesystem."""
    return SourceImage(
        path=Path(path),
        kind="png",
        palette=ImagePalette(colors=list(colors), transparent_index=transparent),
        pixels=np.array(pixels, dtype=np.uint8),
        valid=True,
    )


@pytest.fixture
def write_png(tmp_path):
    """Write an 8-bit indexed PNG and return its path."""

    def _write(name, colors, pixels, transparent=None):
        path = tmp_path / name
        encode_image(path, list(colors), np.array(pixels, dtype=np.uint8), transparent_slot=transparent)
        return path

    return _write


@pytest.fixture
def two_images(write_png):
    """A: [white, black] with one black pixel; B: [black, red], index 0 transparent."""
    a = write_png("a.png", [WHITE, BLACK], [[1, 0], [0, 1]])
    b = write_png("b.png", [BLACK, RED], [[1, 0], [1, 1]], transparent=0)
    return a, b
