"""
Cytoplasmic ring construction around nuclear clusters.

For a nucleus N the ring is

    G = N dilated gap_iterations times
    R = G dilated thickness_iterations more times
    ring = R minus G

with the 4-neighbour cross as structuring element. G leaves an empty gap
between nucleus and ring, since pixels right next to the segmented nucleus
carry blurred nuclear signal. Dilation is clipped to the image: coordinates
that would fall outside it are not added.
"""

from typing import List, Optional, Sequence
from scipy import ndimage

from nc_ratio.clusters import PixelCluster
from nc_ratio.segmentation import FOUR_CONNECTED


DEFAULT_PARAMS = {
    'gap_iterations': 2,  # Dilations between the nucleus and the ring
    'thickness_iterations': 4,  # Dilations that make up the ring itself
}


def dilate4(cluster: PixelCluster, width: int, height: int, iterations: int = 1) -> PixelCluster:
    """
    Dilate a cluster with the 4-neighbour cross, clipped to the image bounds.

    Parameters
    ----------
    cluster : PixelCluster
        Coordinates to grow; all must lie inside the image
    width, height : int
        Image size used for clipping
    iterations : int
        Number of dilation steps (0 returns the cluster unchanged)

    Returns
    -------
    PixelCluster
        The dilated cluster
    """
    if iterations < 0:
        raise ValueError(f"iterations must be >= 0, got {iterations}")
    if iterations == 0 or not cluster:
        return cluster
    # The local box is grown by iterations, then clipped to the image, so the
    # array edge is either out of reach or the image edge itself.
    mask, (x0, y0) = cluster.to_local_mask(width, height, pad=iterations)
    grown = ndimage.binary_dilation(mask, structure=FOUR_CONNECTED, iterations=iterations)
    return PixelCluster.from_mask(grown, offset=(x0, y0))


class RingExpander:
    """Build the cytoplasmic ring cluster for each nuclear cluster."""

    def __init__(
        self,
        gap_iterations: int = DEFAULT_PARAMS['gap_iterations'],
        thickness_iterations: int = DEFAULT_PARAMS['thickness_iterations']
    ):
        if gap_iterations < 0 or thickness_iterations < 0:
            raise ValueError("Ring iterations must be >= 0")
        self.gap_iterations = gap_iterations
        self.thickness_iterations = thickness_iterations

    def rings_for(
        self,
        nucleus: PixelCluster,
        width: int,
        height: int,
        gap_iterations: Optional[int] = None,
        thickness_iterations: Optional[int] = None
    ) -> PixelCluster:
        """
        Return the ring (R minus G) for one nucleus.

        Iteration counts default to the ones given at construction. The ring
        never intersects the nucleus and may be empty or small when the
        nucleus sits against the image border.
        """
        if gap_iterations is None:
            gap_iterations = self.gap_iterations
        if thickness_iterations is None:
            thickness_iterations = self.thickness_iterations
        gap = dilate4(nucleus, width, height, gap_iterations)
        outer = dilate4(gap, width, height, thickness_iterations)
        return outer - gap

    def rings_for_all(
        self,
        nuclei: Sequence[PixelCluster],
        width: int,
        height: int
    ) -> List[PixelCluster]:
        """Rings for a list of nuclei; element i belongs to nuclei[i]."""
        return [self.rings_for(nucleus, width, height) for nucleus in nuclei]
