"""
Unit tests for region measurements.
"""

import numpy as np
import pytest

from nc_ratio.clusters import PixelCluster
from nc_ratio.exceptions import EmptyRegionError, MeasurementError
from nc_ratio.io_utils import GrayscaleBuffer
from nc_ratio.metrics import RegionMeasurer, RegionStats, compute_nc_ratio, physical_area


def test_measure_sum_and_mean():
    """Sum and mean over a cluster use the raw samples."""
    img = np.arange(100, dtype=np.uint16).reshape(10, 10)
    buf = GrayscaleBuffer(img)
    cluster = PixelCluster([(0, 0), (1, 0), (0, 1)])  # samples 0, 1, 10

    stats = RegionMeasurer().measure(cluster, buf)

    assert stats.count == 3
    assert stats.total == 11.0
    assert stats.mean == pytest.approx(11.0 / 3)


def test_measure_large_sums_do_not_overflow():
    """16-bit samples are summed in float64."""
    buf = GrayscaleBuffer(np.full((100, 100), 65535, dtype=np.uint16))
    cluster = PixelCluster((x, y) for x in range(100) for y in range(100))

    stats = RegionMeasurer().measure(cluster, buf)

    assert stats.total == 65535.0 * 10000
    assert stats.mean == 65535.0


def test_measure_empty_cluster_raises():
    buf = GrayscaleBuffer(np.ones((10, 10), dtype=np.uint8))
    with pytest.raises(EmptyRegionError):
        RegionMeasurer().measure(PixelCluster(), buf)


def test_measure_out_of_bounds_raises():
    """A coordinate outside the buffer is a measurement error, not a wrap-around."""
    buf = GrayscaleBuffer(np.ones((10, 10), dtype=np.uint8))
    with pytest.raises(MeasurementError):
        RegionMeasurer().measure(PixelCluster([(5, 5), (10, 5)]), buf)
    with pytest.raises(MeasurementError):
        RegionMeasurer().measure(PixelCluster([(-1, 0)]), buf)


def test_physical_area_uses_calibration():
    buf = GrayscaleBuffer(np.zeros((10, 10), dtype=np.uint8), pixel_width=0.5, pixel_height=2.0)
    cluster = PixelCluster((x, 0) for x in range(8))

    assert physical_area(cluster, buf) == 8 * 0.5 * 2.0


def test_compute_nc_ratio():
    nuclear = RegionStats(count=10, total=10000.0, mean=1000.0)
    cyto = RegionStats(count=20, total=2000.0, mean=100.0)

    assert compute_nc_ratio(nuclear, cyto) == pytest.approx(10.0)


def test_compute_nc_ratio_zero_cytoplasm():
    nuclear = RegionStats(count=10, total=10000.0, mean=1000.0)
    cyto = RegionStats(count=20, total=0.0, mean=0.0)

    with pytest.raises(MeasurementError):
        compute_nc_ratio(nuclear, cyto)
