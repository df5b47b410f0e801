"""
Pixel clusters: immutable sets of integer (x, y) coordinates.

A cluster describes either a nucleus (from labeling) or a cytoplasmic ring
(from ring expansion). Each coordinate appears at most once and iteration
order carries no meaning. Conversion to and from boolean masks lets the
morphology run on numpy arrays while the pipeline keeps set semantics.
"""

from typing import Iterable, Iterator, Optional, Tuple
import numpy as np

from nc_ratio.io_utils import RoiRect


class PixelCluster:
    """Immutable set of integer (x, y) pixel coordinates."""

    __slots__ = ("_points",)

    def __init__(self, points: Iterable[Tuple[int, int]] = ()):
        self._points = frozenset((int(x), int(y)) for x, y in points)

    @classmethod
    def _from_frozenset(cls, points: frozenset) -> "PixelCluster":
        cluster = cls.__new__(cls)
        cluster._points = points
        return cluster

    @classmethod
    def from_arrays(cls, xs: np.ndarray, ys: np.ndarray) -> "PixelCluster":
        """Build a cluster from parallel x and y coordinate arrays."""
        xs = np.asarray(xs, dtype=np.int64).tolist()
        ys = np.asarray(ys, dtype=np.int64).tolist()
        return cls._from_frozenset(frozenset(zip(xs, ys)))

    @classmethod
    def from_mask(cls, mask: np.ndarray, offset: Tuple[int, int] = (0, 0)) -> "PixelCluster":
        """
        Build a cluster from the True pixels of a mask indexed [y, x].

        offset (dx, dy) is added to every coordinate, so a mask cut from a
        larger image can be mapped back to that image's coordinates.
        """
        ys, xs = np.nonzero(mask)
        return cls.from_arrays(xs + offset[0], ys + offset[1])

    @property
    def points(self) -> frozenset:
        return self._points

    def coordinates(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return (xs, ys) as int64 arrays, sorted row-major."""
        if not self._points:
            empty = np.empty(0, dtype=np.int64)
            return empty, empty.copy()
        arr = np.array(sorted(self._points, key=lambda p: (p[1], p[0])), dtype=np.int64)
        return arr[:, 0], arr[:, 1]

    def bbox(self) -> Optional[RoiRect]:
        """Bounding rectangle of the cluster, or None when empty."""
        if not self._points:
            return None
        xs, ys = self.coordinates()
        x0, y0 = int(xs.min()), int(ys.min())
        return RoiRect(x0, y0, int(xs.max()) - x0 + 1, int(ys.max()) - y0 + 1)

    def touches_border(self, width: int, height: int) -> bool:
        """True if any coordinate lies on the outermost row or column."""
        return any(
            x <= 0 or y <= 0 or x >= width - 1 or y >= height - 1
            for x, y in self._points
        )

    def offset(self, dx: int, dy: int) -> "PixelCluster":
        """Return a copy translated by (dx, dy)."""
        if dx == 0 and dy == 0:
            return self
        return PixelCluster._from_frozenset(
            frozenset((x + dx, y + dy) for x, y in self._points)
        )

    def to_mask(self, width: int, height: int) -> np.ndarray:
        """
        Render the cluster into a bool mask of shape (height, width).

        Raises
        ------
        IndexError
            If a coordinate lies outside the mask.
        """
        mask = np.zeros((height, width), dtype=bool)
        if not self._points:
            return mask
        xs, ys = self.coordinates()
        if xs.min() < 0 or ys.min() < 0 or xs.max() >= width or ys.max() >= height:
            raise IndexError(f"Cluster does not fit in a {width}x{height} mask")
        mask[ys, xs] = True
        return mask

    def to_local_mask(
        self,
        width: int,
        height: int,
        pad: int = 0
    ) -> Tuple[np.ndarray, Tuple[int, int]]:
        """
        Render the cluster into a mask covering its bounding box grown by pad.

        The box is clipped to the image bounds (0..width-1, 0..height-1).

        Returns
        -------
        tuple
            (mask, (x0, y0)) where (x0, y0) is the image position of mask[0, 0]
        """
        box = self.bbox()
        if box is None:
            return np.zeros((0, 0), dtype=bool), (0, 0)
        x0 = max(0, box.x - pad)
        y0 = max(0, box.y - pad)
        x1 = min(width, box.x + box.width + pad)
        y1 = min(height, box.y + box.height + pad)
        mask = np.zeros((y1 - y0, x1 - x0), dtype=bool)
        xs, ys = self.coordinates()
        mask[ys - y0, xs - x0] = True
        return mask, (x0, y0)

    def isdisjoint(self, other: "PixelCluster") -> bool:
        return self._points.isdisjoint(other._points)

    def issubset(self, other: "PixelCluster") -> bool:
        return self._points <= other._points

    def __sub__(self, other: "PixelCluster") -> "PixelCluster":
        return PixelCluster._from_frozenset(self._points - other._points)

    def __and__(self, other: "PixelCluster") -> "PixelCluster":
        return PixelCluster._from_frozenset(self._points & other._points)

    def __or__(self, other: "PixelCluster") -> "PixelCluster":
        return PixelCluster._from_frozenset(self._points | other._points)

    def __le__(self, other: "PixelCluster") -> bool:
        return self.issubset(other)

    def __len__(self) -> int:
        return len(self._points)

    def __bool__(self) -> bool:
        return bool(self._points)

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        return iter(self._points)

    def __contains__(self, point) -> bool:
        return tuple(point) in self._points

    def __eq__(self, other) -> bool:
        if not isinstance(other, PixelCluster):
            return NotImplemented
        return self._points == other._points

    def __hash__(self) -> int:
        return hash(self._points)

    def __repr__(self):
        return f"PixelCluster({len(self._points)} px, bbox={self.bbox()})"
