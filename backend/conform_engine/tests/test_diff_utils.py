"""
Unit tests for word and pixel diffs.
"""

import pytest
from PIL import Image, ImageDraw

from conform_engine.diff_utils import DiffOp, pixel_diff, render_page_pair_diff, word_diff

from conftest import FakePdfEngine


def _ops(tokens):
    return [(t.op, t.text) for t in tokens]


class TestWordDiff:

    def test_identical(self):
        tokens = word_diff("shall be galvanized", "shall be galvanized")
        assert all(t.op == DiffOp.UNCHANGED for t in tokens)
        assert "".join(t.text for t in tokens) == "shall be galvanized"

    def test_replacement_word(self):
        tokens = word_diff("shall be galvanized steel", "shall be stainless steel")
        assert _ops(tokens) == [
            (DiffOp.UNCHANGED, "shall"),
            (DiffOp.UNCHANGED, " "),
            (DiffOp.UNCHANGED, "be"),
            (DiffOp.UNCHANGED, " "),
            (DiffOp.DELETED, "galvanized"),
            (DiffOp.INSERTED, "stainless"),
            (DiffOp.UNCHANGED, " "),
            (DiffOp.UNCHANGED, "steel"),
        ]

    def test_pure_insert_and_delete(self):
        assert _ops(word_diff("", "new text")) == [
            (DiffOp.INSERTED, "new"), (DiffOp.INSERTED, " "), (DiffOp.INSERTED, "text"),
        ]
        assert [t.op for t in word_diff("old", "")] == [DiffOp.DELETED]

    def test_sides_reconstruct_inputs(self):
        old, new = "Provide 2 coats of  paint", "Provide 3 coats of primer and paint"
        tokens = word_diff(old, new)
        assert "".join(t.text for t in tokens if t.op != DiffOp.INSERTED) == old
        assert "".join(t.text for t in tokens if t.op != DiffOp.DELETED) == new


class TestPixelDiff:

    def test_identical_images(self):
        image = Image.new("RGB", (50, 50), "white")
        result = pixel_diff(image, image.copy())
        assert result.identical
        assert result.bbox is None
        assert result.ratio == 0

    def test_detects_new_content(self):
        before = Image.new("RGB", (100, 100), "white")
        after = before.copy()
        ImageDraw.Draw(after).rectangle((40, 40, 59, 59), fill="black")

        result = pixel_diff(before, after)

        assert result.changed_pixels > 0
        assert result.bbox == (40, 40, 60, 60)
        assert result.image.size == (100, 100)

    def test_one_pixel_shift_tolerated(self):
        before = Image.new("L", (60, 60), 255)
        after = before.copy()
        ImageDraw.Draw(before).line((10, 10, 10, 50), fill=0, width=3)
        ImageDraw.Draw(after).line((11, 10, 11, 50), fill=0, width=3)

        assert pixel_diff(before, after).changed_pixels == 0

    def test_small_difference_below_threshold(self):
        before = Image.new("L", (20, 20), 255)
        after = Image.new("L", (20, 20), 240)
        assert pixel_diff(before, after, threshold=0.1).identical
        assert not pixel_diff(before, after, threshold=0.01).identical

    def test_different_sizes_padded(self):
        before = Image.new("RGB", (40, 40), "white")
        after = Image.new("RGB", (40, 60), "white")
        result = pixel_diff(before, after)
        assert result.total_pixels == 40 * 60
        assert result.identical

    @pytest.mark.asyncio
    async def test_render_page_pair_uses_shared_scale(self):
        engine = FakePdfEngine({1: []}, width=100, height=80)
        handle = engine.handle()
        result = await render_page_pair_diff(handle, 1, handle, 1, scale=1.5, engine=engine)
        assert result.image.size == (150, 120)
        assert result.identical
