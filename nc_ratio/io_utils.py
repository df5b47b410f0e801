"""
I/O utilities for calibrated grayscale channels.

This module defines the GrayscaleBuffer that carries one channel's samples
plus its physical pixel calibration, the RoiRect used to restrict analysis to
a sub-area, and helpers for loading the channels of one imaged field from
disk.
"""

from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence, Tuple
import numpy as np
from skimage import io, color

from nc_ratio.exceptions import ConfigurationError


SUPPORTED_DTYPES = (
    np.uint8, np.uint16, np.uint32,
    np.int8, np.int16, np.int32,
    np.float32, np.float64,
)

IMAGE_EXTENSIONS = ('.tif', '.tiff', '.png', '.jpg', '.jpeg')


class RoiRect(NamedTuple):
    """Axis-aligned rectangle in pixel coordinates (x, y = top-left corner)."""
    x: int
    y: int
    width: int
    height: int


class GrayscaleBuffer:
    """
    One channel's grayscale samples with physical pixel calibration.

    The sample array is copied on construction and made read-only, so a
    buffer can be handed to several analyses without being modified.

    Parameters
    ----------
    samples : np.ndarray
        2D array of samples, indexed [y, x]
    pixel_width : float
        Physical width of one pixel (default 1.0)
    pixel_height : float, optional
        Physical height of one pixel (defaults to pixel_width)
    unit : str
        Unit label of the calibration (default "um")
    """

    def __init__(
        self,
        samples: np.ndarray,
        pixel_width: float = 1.0,
        pixel_height: Optional[float] = None,
        unit: str = "um"
    ):
        samples = np.array(samples, copy=True)
        if samples.ndim != 2:
            raise ConfigurationError(
                f"Grayscale buffer must be 2D, got shape {samples.shape}"
            )
        if samples.dtype.type not in SUPPORTED_DTYPES:
            raise ConfigurationError(f"Unsupported sample type: {samples.dtype}")
        if pixel_height is None:
            pixel_height = pixel_width
        if pixel_width <= 0 or pixel_height <= 0:
            raise ConfigurationError(
                f"Pixel size must be positive, got {pixel_width} x {pixel_height}"
            )
        samples.setflags(write=False)
        self._samples = samples
        self.pixel_width = float(pixel_width)
        self.pixel_height = float(pixel_height)
        self.unit = unit

    @property
    def samples(self) -> np.ndarray:
        return self._samples

    @property
    def width(self) -> int:
        return self._samples.shape[1]

    @property
    def height(self) -> int:
        return self._samples.shape[0]

    @property
    def shape(self) -> Tuple[int, int]:
        return self._samples.shape

    @property
    def bit_depth(self) -> int:
        return self._samples.dtype.itemsize * 8

    @property
    def pixel_area(self) -> float:
        """Physical area of one pixel (pixel_width * pixel_height)."""
        return self.pixel_width * self.pixel_height

    def crop(self, roi: RoiRect) -> "GrayscaleBuffer":
        """
        Return a new buffer restricted to roi, clipped to the image bounds.

        Raises
        ------
        ConfigurationError
            If the rectangle does not overlap the image.
        """
        r = clip_roi(roi, self.width, self.height)
        if r.width == 0 or r.height == 0:
            raise ConfigurationError(f"ROI {roi} does not overlap image {self.shape}")
        return GrayscaleBuffer(
            self._samples[r.y:r.y + r.height, r.x:r.x + r.width],
            pixel_width=self.pixel_width,
            pixel_height=self.pixel_height,
            unit=self.unit
        )

    def __repr__(self):
        return (
            f"GrayscaleBuffer({self.width}x{self.height}, {self._samples.dtype}, "
            f"{self.pixel_width}x{self.pixel_height} {self.unit})"
        )


def clip_roi(roi: RoiRect, width: int, height: int) -> RoiRect:
    """Clip roi to an image of the given size."""
    x0 = max(0, roi.x)
    y0 = max(0, roi.y)
    x1 = min(width, roi.x + roi.width)
    y1 = min(height, roi.y + roi.height)
    return RoiRect(x0, y0, max(0, x1 - x0), max(0, y1 - y0))


def check_channels(buffers: Sequence[GrayscaleBuffer]) -> Tuple[int, int]:
    """
    Check that all channels of one field share shape and calibration.

    Returns
    -------
    tuple
        (height, width) shared by all channels

    Raises
    ------
    ConfigurationError
        If no channels are given, or shapes or calibrations disagree.
    """
    if not buffers:
        raise ConfigurationError("No channels supplied")
    first = buffers[0]
    for i, buf in enumerate(buffers[1:], start=2):
        if buf.shape != first.shape:
            raise ConfigurationError(
                f"Channel {i} has shape {buf.shape}, channel 1 has {first.shape}"
            )
        if (buf.pixel_width, buf.pixel_height) != (first.pixel_width, first.pixel_height):
            raise ConfigurationError(
                f"Channel {i} calibration differs from channel 1"
            )
    return first.shape


def read_grayscale(filepath: Path) -> np.ndarray:
    """
    Read an image file as a 2D grayscale array.

    Integer grayscale files keep their sample type. RGB(A) files are
    converted with skimage.color.rgb2gray and come back as float64.
    """
    img = io.imread(str(filepath))
    if img.ndim == 3:
        if img.shape[-1] == 4:
            img = color.rgba2rgb(img)
        img = color.rgb2gray(img)
    elif img.ndim != 2:
        raise ConfigurationError(f"Cannot read {filepath} as a 2D image (shape {img.shape})")
    return img


def get_field_filepaths(field_id: str, data_root: Path) -> List[Path]:
    """
    List the channel files of one field, in channel order.

    A field is a subdirectory of data_root; its image files sorted by name
    are channels 1, 2, ...

    Raises
    ------
    FileNotFoundError
        If the field directory does not exist or holds no images.
    """
    field_dir = Path(data_root) / field_id
    if not field_dir.is_dir():
        raise FileNotFoundError(f"Field directory not found: {field_dir}")
    filepaths = sorted(
        p for p in field_dir.iterdir()
        if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
    )
    if not filepaths:
        raise FileNotFoundError(f"No channel images found in {field_dir}")
    return filepaths


def load_channels(
    filepaths: Sequence[Path],
    pixel_size_um: float = 1.0
) -> List[GrayscaleBuffer]:
    """
    Load the channels of one imaged field.

    Parameters
    ----------
    filepaths : sequence of Path
        One file per channel, in channel order (channel 1 first)
    pixel_size_um : float
        Pixel size in microns per pixel, applied to both axes

    Returns
    -------
    list
        One GrayscaleBuffer per channel

    Raises
    ------
    FileNotFoundError
        If any channel file does not exist.
    ConfigurationError
        If channels have different shapes.
    """
    buffers = []
    for filepath in filepaths:
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"Channel image not found: {filepath}")
        buffers.append(
            GrayscaleBuffer(read_grayscale(filepath), pixel_width=pixel_size_um, unit="um")
        )
    check_channels(buffers)
    return buffers
