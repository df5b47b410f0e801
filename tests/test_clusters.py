"""
Unit tests for PixelCluster.
"""

import numpy as np
import pytest

from nc_ratio.clusters import PixelCluster
from nc_ratio.io_utils import RoiRect


def test_coordinates_are_unique():
    cluster = PixelCluster([(1, 2), (1, 2), (3, 4)])
    assert len(cluster) == 2
    assert (1, 2) in cluster
    assert (2, 1) not in cluster


def test_from_mask_uses_x_y_order_and_offset():
    mask = np.zeros((5, 8), dtype=bool)
    mask[1, 6] = True  # row 1, column 6

    cluster = PixelCluster.from_mask(mask, offset=(10, 20))

    assert cluster == PixelCluster([(16, 21)])


def test_to_mask_rejects_coordinates_outside():
    cluster = PixelCluster([(3, 3)])
    assert cluster.to_mask(4, 4)[3, 3]
    with pytest.raises(IndexError):
        cluster.to_mask(3, 3)


def test_set_operations():
    a = PixelCluster([(0, 0), (1, 0), (2, 0)])
    b = PixelCluster([(2, 0), (3, 0)])

    assert a - b == PixelCluster([(0, 0), (1, 0)])
    assert a & b == PixelCluster([(2, 0)])
    assert len(a | b) == 4
    assert not a.isdisjoint(b)
    assert (a - b).isdisjoint(b)
    assert (a & b) <= a


def test_bbox_and_offset():
    cluster = PixelCluster([(2, 3), (5, 4)])

    assert cluster.bbox() == RoiRect(2, 3, 4, 2)
    assert cluster.offset(10, 1).bbox() == RoiRect(12, 4, 4, 2)
    assert PixelCluster().bbox() is None


def test_touches_border():
    assert PixelCluster([(0, 5)]).touches_border(10, 10)
    assert PixelCluster([(5, 9)]).touches_border(10, 10)
    assert not PixelCluster([(5, 5)]).touches_border(10, 10)


def test_local_mask_is_clipped():
    cluster = PixelCluster([(0, 0), (1, 1)])

    mask, origin = cluster.to_local_mask(10, 10, pad=3)

    assert origin == (0, 0)
    assert mask.shape == (5, 5)
    assert mask[1, 1] and mask[0, 0]
