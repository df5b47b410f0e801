"""
Intensity measurements over pixel clusters.

Measurements always read the original, unfiltered samples of a channel, so
background subtraction and blurring used for segmentation never leak into the
reported intensities.
"""

from typing import NamedTuple
import numpy as np

from nc_ratio.clusters import PixelCluster
from nc_ratio.exceptions import EmptyRegionError, MeasurementError
from nc_ratio.io_utils import GrayscaleBuffer


class RegionStats(NamedTuple):
    """Pixel count, intensity sum and mean intensity of one region."""
    count: int
    total: float
    mean: float


class RegionMeasurer:
    """Compute RegionStats for a cluster against a channel."""

    def measure(self, cluster: PixelCluster, buffer: GrayscaleBuffer) -> RegionStats:
        """
        Sum and average the samples under a cluster.

        Raises
        ------
        EmptyRegionError
            If the cluster has no pixels (its mean is undefined).
        MeasurementError
            If a coordinate lies outside the buffer, which means the cluster
            and the buffer come from images of different sizes.
        """
        if not cluster:
            raise EmptyRegionError("Cannot compute the mean of an empty region")
        xs, ys = cluster.coordinates()
        if (xs.min() < 0 or ys.min() < 0 or
                xs.max() >= buffer.width or ys.max() >= buffer.height):
            raise MeasurementError(
                f"Cluster with bbox {cluster.bbox()} lies outside a "
                f"{buffer.width}x{buffer.height} buffer"
            )
        total = float(np.sum(buffer.samples[ys, xs], dtype=np.float64))
        count = len(xs)
        return RegionStats(count=count, total=total, mean=total / count)


def physical_area(cluster: PixelCluster, buffer: GrayscaleBuffer) -> float:
    """Cluster area in calibrated units² (pixel count x pixel area)."""
    return len(cluster) * buffer.pixel_area


def compute_nc_ratio(nuclear: RegionStats, cytoplasmic: RegionStats) -> float:
    """
    Nuclear mean divided by cytoplasmic mean.

    Raises
    ------
    MeasurementError
        If the cytoplasmic mean is zero.
    """
    if cytoplasmic.mean == 0:
        raise MeasurementError("Cytoplasmic mean intensity is zero")
    return nuclear.mean / cytoplasmic.mean
