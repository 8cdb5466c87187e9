"""
Tests for vertical reframe crop geometry.
"""

import pytest

from clipforge.services.geometry import VERTICAL_RATIO, CropBox, crop_for


class TestCropFor:
    """Tests for crop_for."""

    def test_landscape_source_is_cropped_around_center(self):
        """1920x1080 keeps full height and crops a centered 9:16 column."""
        assert crop_for(1920, 1080) == CropBox(width=607, height=1080, x=656, y=0)

    def test_portrait_source_keeps_full_width_with_top_bias(self):
        """1080x1920 is already 9:16, crop starts 5% below the top."""
        assert crop_for(1080, 1920) == CropBox(width=1080, height=1920, x=0, y=96)

    def test_square_source(self):
        box = crop_for(1000, 1000)
        assert box.height == 1000
        assert box.width == 562
        assert box.x == (1000 - 562) // 2

    def test_crop_matches_target_ratio(self):
        box = crop_for(3840, 2160)
        assert box.width / box.height == pytest.approx(VERTICAL_RATIO, abs=0.001)

    def test_custom_ratio(self):
        """A 1:1 target on a landscape source crops a square."""
        box = crop_for(1920, 1080, target_ratio=1.0)
        assert (box.width, box.height, box.x, box.y) == (1080, 1080, 420, 0)

    @pytest.mark.parametrize("width,height", [(0, 1080), (1920, 0), (-1, 100)])
    def test_rejects_non_positive_dimensions(self, width, height):
        with pytest.raises(ValueError):
            crop_for(width, height)

    def test_rejects_non_positive_ratio(self):
        with pytest.raises(ValueError):
            crop_for(1920, 1080, target_ratio=0)
