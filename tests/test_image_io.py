"""Tests for PNG decoding, encoding and backups."""
import os
import stat

import numpy as np
import pytest
from PIL import Image

from conftest import BLACK, GREEN, RED, WHITE
from palette_join.image_io import (
    BackupError,
    backup_file,
    backup_path_for,
    decode_image,
    encode_image,
    load_source,
)
from palette_join.palette_ops import PaletteError

pytestmark = pytest.mark.unit


class TestEncodeDecode:
    def test_palette_length_and_pixels_survive(self, write_png):
        path = write_png("small.png", [RED, GREEN, WHITE], [[0, 1, 2], [2, 1, 0]], transparent=2)
        image = decode_image(path)
        assert image.valid
        assert image.palette.colors == [RED, GREEN, WHITE]
        assert image.transparent_index == 2
        assert image.size == (3, 2)
        assert image.pixels.tolist() == [[0, 1, 2], [2, 1, 0]]

    def test_output_is_eight_bit_paletted(self, write_png):
        path = write_png("two.png", [RED, GREEN], [[0, 1]], transparent=0)
        header = path.read_bytes()[:26]
        assert header[24] == 8
        assert header[25] == 3
        with Image.open(path) as img:
            assert img.mode == "P"
            assert img.info["transparency"] == 0

    def test_no_transparency_when_not_requested(self, write_png):
        path = write_png("opaque.png", [RED, GREEN], [[0, 1]])
        assert decode_image(path).transparent_index is None

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
    def test_rewrite_keeps_file_mode(self, write_png):
        path = write_png("shared.png", [RED, GREEN], [[0, 1]])
        os.chmod(path, 0o644)
        encode_image(path, [GREEN, RED], np.array([[1, 0]], dtype=np.uint8))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o644
        assert decode_image(path).palette.colors == [GREEN, RED]

    def test_encode_rejects_flat_buffer(self, tmp_path):
        with pytest.raises(ValueError):
            encode_image(tmp_path / "x.png", [RED], np.zeros(4, dtype=np.uint8))

    def test_failed_encode_keeps_original(self, write_png):
        path = write_png("keep.png", [RED, GREEN], [[0, 1]])
        original = path.read_bytes()
        with pytest.raises(ValueError):
            encode_image(path, [RED], np.zeros((1, 2, 3), dtype=np.uint8))
        assert path.read_bytes() == original
        assert [p.name for p in path.parent.iterdir()] == ["keep.png"]


class TestDecodeErrors:
    def test_bad_signature(self, tmp_path):
        path = tmp_path / "fake.png"
        path.write_bytes(b"not a png at all, really not")
        with pytest.raises(PaletteError, match="not a valid PNG"):
            decode_image(path)

    def test_rgb_image_is_unsupported(self, tmp_path):
        path = tmp_path / "rgb.png"
        Image.new("RGB", (2, 2), RED).save(path)
        with pytest.raises(PaletteError, match="8-bit paletted"):
            decode_image(path)

    def test_low_bit_depth_is_unsupported(self, tmp_path):
        path = tmp_path / "onebit.png"
        img = Image.new("P", (4, 4))
        img.putpalette([*BLACK, *WHITE])
        img.save(path)
        assert path.read_bytes()[24] < 8
        with pytest.raises(PaletteError, match="8-bit paletted"):
            decode_image(path)

    def test_truncated_data(self, write_png):
        noise = np.random.default_rng(0).integers(0, 2, size=(64, 64), dtype=np.uint8)
        path = write_png("cut.png", [RED, GREEN], noise)
        data = path.read_bytes()
        path.write_bytes(data[: len(data) // 2])
        with pytest.raises((PaletteError, OSError)):
            decode_image(path)


class TestLoadSource:
    def test_unknown_extension_is_invalid(self, tmp_path):
        path = tmp_path / "sprite.bmp"
        path.write_bytes(b"BM")
        image = load_source(path)
        assert not image.valid
        assert image.error == "invalid image or palette"

    def test_missing_file_is_invalid(self, tmp_path):
        image = load_source(tmp_path / "gone.png")
        assert not image.valid
        assert image.error

    def test_gpl_input_has_palette_only(self, tmp_path):
        path = tmp_path / "extra.gpl"
        path.write_text("GIMP Palette\nName: extra\n#\n  0 255   0 Green\n", encoding="utf-8")
        image = load_source(path)
        assert image.valid
        assert image.kind == "gpl"
        assert image.palette.colors == [GREEN]
        assert image.pixels is None

    def test_skip_is_logged(self, tmp_path, caplog):
        with caplog.at_level("WARNING", logger="palette_join.image_io"):
            load_source(tmp_path / "gone.png")
        assert "Skipping" in caplog.text


class TestBackup:
    def test_copy_next_to_original(self, write_png):
        path = write_png("sprite.png", [RED], [[0]])
        dest = backup_file(path)
        assert dest == backup_path_for(path)
        assert dest.name == "sprite.png.bak"
        assert dest.read_bytes() == path.read_bytes()

    def test_existing_backup_is_not_overwritten(self, write_png):
        path = write_png("sprite.png", [RED], [[0]])
        backup_path_for(path).write_bytes(b"older backup")
        with pytest.raises(BackupError):
            backup_file(path)
        assert backup_path_for(path).read_bytes() == b"older backup"

    def test_missing_source(self, tmp_path):
        with pytest.raises(BackupError):
            backup_file(tmp_path / "nothing.png")
        assert not (tmp_path / "nothing.png.bak").exists()
