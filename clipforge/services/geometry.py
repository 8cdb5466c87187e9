"""
Crop geometry for vertical reframing.
"""

import math
from dataclasses import dataclass

# 9:16 portrait
VERTICAL_RATIO = 9 / 16

# Fraction of source height skipped at the top when cropping tall sources
TOP_BIAS = 0.05


@dataclass(frozen=True)
class CropBox:
    """Crop rectangle in source pixels."""

    width: int
    height: int
    x: int
    y: int


def crop_for(
    source_width: int,
    source_height: int,
    target_ratio: float = VERTICAL_RATIO,
) -> CropBox:
    """
    Compute a centered (or slightly top-biased) crop matching target_ratio.

    Wider sources keep their full height and are cropped horizontally around
    the center. Sources already as tall or taller than the target keep their
    full width, with the crop starting a little below the top edge where faces
    are usually framed.

    Raises:
        ValueError: If any dimension or the ratio is not positive
    """
    if source_width <= 0 or source_height <= 0:
        raise ValueError(f"Invalid source dimensions: {source_width}x{source_height}")
    if target_ratio <= 0:
        raise ValueError(f"Invalid target ratio: {target_ratio}")

    if source_width / source_height > target_ratio:
        crop_height = source_height
        crop_width = math.floor(source_height * target_ratio)
        return CropBox(
            width=crop_width,
            height=crop_height,
            x=(source_width - crop_width) // 2,
            y=0,
        )

    crop_width = source_width
    crop_height = math.floor(source_width / target_ratio)
    return CropBox(
        width=crop_width,
        height=crop_height,
        x=0,
        y=math.floor(source_height * TOP_BIAS),
    )
