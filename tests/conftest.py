"""
Shared fixtures: synthetic fluorescence fields with disk-shaped nuclei.
"""

import numpy as np
import pytest
from skimage.draw import disk

from nc_ratio.io_utils import GrayscaleBuffer


def draw_disks(shape, disks, inside=1000, outside=100, dtype=np.uint16):
    """Image of the given shape with filled disks [(row, col, radius), ...]."""
    img = np.full(shape, outside, dtype=dtype)
    for row, col, radius in disks:
        rr, cc = disk((row, col), radius, shape=shape)
        img[rr, cc] = inside
    return img


@pytest.fixture
def make_buffer():
    """Factory for GrayscaleBuffers holding disks."""
    def _make(disks, shape=(100, 100), inside=1000, outside=100, pixel_size=1.0):
        return GrayscaleBuffer(
            draw_disks(shape, disks, inside=inside, outside=outside),
            pixel_width=pixel_size
        )
    return _make


@pytest.fixture
def single_disk(make_buffer):
    """100x100 field, one disk of radius 10 at (50, 50), 1000 inside, 100 outside."""
    return make_buffer([(50, 50, 10)])
