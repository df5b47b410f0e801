"""
Unit tests for cytoplasmic ring construction.
"""

import numpy as np
import pytest
from skimage.draw import disk

from nc_ratio.clusters import PixelCluster
from nc_ratio.rings import RingExpander, dilate4


def disk_cluster(center, radius, shape=(100, 100)):
    mask = np.zeros(shape, dtype=bool)
    rr, cc = disk(center, radius, shape=shape)
    mask[rr, cc] = True
    return PixelCluster.from_mask(mask)


def test_dilate4_single_pixel_is_diamond():
    """n dilations of one pixel give the L1 diamond of 2n² + 2n + 1 pixels."""
    seed = PixelCluster([(50, 50)])

    assert len(dilate4(seed, 100, 100, 1)) == 5
    assert len(dilate4(seed, 100, 100, 3)) == 2 * 9 + 2 * 3 + 1
    assert (50, 47) in dilate4(seed, 100, 100, 3)
    assert (52, 52) not in dilate4(seed, 100, 100, 3)


def test_dilate4_zero_iterations_is_identity():
    seed = PixelCluster([(3, 4), (3, 5)])
    assert dilate4(seed, 10, 10, 0) == seed
    with pytest.raises(ValueError):
        dilate4(seed, 10, 10, -1)


def test_dilate4_clips_at_origin():
    """Dilating a cluster at (0, 0) never yields negative coordinates."""
    corner = PixelCluster([(0, 0), (1, 0), (0, 1)])

    grown = dilate4(corner, 20, 20, 5)

    xs, ys = grown.coordinates()
    assert xs.min() == 0 and ys.min() == 0
    assert (0, 0) in grown
    assert (6, 0) in grown


def test_dilate4_clips_at_far_edge():
    edge = PixelCluster([(9, 9)])
    grown = dilate4(edge, 10, 10, 2)
    xs, ys = grown.coordinates()
    assert xs.max() == 9 and ys.max() == 9
    assert len(grown) == 6


def test_ring_disjoint_from_nucleus():
    nucleus = disk_cluster((50, 50), 10)
    ring = RingExpander().rings_for(nucleus, 100, 100)

    assert len(ring) > 0
    assert nucleus.isdisjoint(ring)


def test_ring_equals_difference_of_dilations():
    """ring = dilate(N, gap + thickness) minus dilate(N, gap)."""
    nucleus = disk_cluster((40, 60), 7)
    gap, thickness = 2, 4

    ring = RingExpander(gap, thickness).rings_for(nucleus, 100, 100)
    expected = dilate4(nucleus, 100, 100, gap + thickness) - dilate4(nucleus, 100, 100, gap)

    assert ring == expected


def test_ring_single_pixel_size():
    """Single pixel: 85-pixel diamond (6 steps) minus 13-pixel diamond (2 steps)."""
    ring = RingExpander(2, 4).rings_for(PixelCluster([(50, 50)]), 100, 100)
    assert len(ring) == 85 - 13


def test_ring_iterations_override():
    expander = RingExpander(2, 4)
    seed = PixelCluster([(50, 50)])
    assert len(expander.rings_for(seed, 100, 100, gap_iterations=0, thickness_iterations=1)) == 4


def test_ring_smaller_at_border():
    """A nucleus on the border gets a clipped, smaller ring."""
    expander = RingExpander()
    inner = expander.rings_for(disk_cluster((50, 50), 10), 100, 100)
    border = expander.rings_for(disk_cluster((50, 0), 10), 100, 100)

    assert len(border) < len(inner)
    xs, _ = border.coordinates()
    assert xs.min() >= 0


def test_rings_for_all_is_index_aligned():
    nuclei = [disk_cluster((20, 20), 5), disk_cluster((70, 70), 8)]
    expander = RingExpander()

    rings = expander.rings_for_all(nuclei, 100, 100)

    assert len(rings) == 2
    for nucleus, ring in zip(nuclei, rings):
        assert ring == expander.rings_for(nucleus, 100, 100)
