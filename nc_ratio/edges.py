"""
Edge artifact detection interface.

An edge detector looks at all channels of one field and reports whether an
optical or illumination edge (for instance the wall of a well) is visible.
It answers with an ExclusionRegion covering the artifact, or None.

The pipeline only depends on detect_edge(), so any object with that method
can be passed in. Two simple implementations ship here: one that never
reports an edge and one that always reports a fixed region.
"""

from typing import NamedTuple, Optional, Sequence
import numpy as np

from nc_ratio.io_utils import GrayscaleBuffer, RoiRect, clip_roi


class ExclusionRegion(NamedTuple):
    """Pixels affected by an edge artifact (True = excluded), indexed [y, x]."""
    mask: np.ndarray

    @classmethod
    def from_rect(cls, rect: RoiRect, width: int, height: int) -> "ExclusionRegion":
        mask = np.zeros((height, width), dtype=bool)
        r = clip_roi(rect, width, height)
        mask[r.y:r.y + r.height, r.x:r.x + r.width] = True
        return cls(mask)

    def crop(self, roi: RoiRect) -> "ExclusionRegion":
        height, width = self.mask.shape
        r = clip_roi(roi, width, height)
        return ExclusionRegion(self.mask[r.y:r.y + r.height, r.x:r.x + r.width].copy())


class EdgeDetector:
    """Base class for edge detectors."""

    def detect_edge(self, buffers: Sequence[GrayscaleBuffer]) -> Optional[ExclusionRegion]:
        raise NotImplementedError


class NullEdgeDetector(EdgeDetector):
    """Never reports an edge."""

    def detect_edge(self, buffers):
        return None


class StaticEdgeDetector(EdgeDetector):
    """
    Always reports the same region.

    Useful when the artifact position is known in advance (a fixed mask from
    the acquisition setup) and in tests.
    """

    def __init__(self, region: ExclusionRegion):
        self.region = region

    def detect_edge(self, buffers):
        return self.region
