"""
Unit tests for grayscale buffers and channel loading.
"""

import numpy as np
import pytest
from skimage import io

from nc_ratio.exceptions import ConfigurationError
from nc_ratio.io_utils import (
    GrayscaleBuffer, RoiRect, check_channels, clip_roi,
    get_field_filepaths, load_channels
)


def test_buffer_is_immutable_copy():
    """The buffer copies its input and refuses writes."""
    data = np.zeros((4, 6), dtype=np.uint16)
    buf = GrayscaleBuffer(data, pixel_width=0.65)
    data[0, 0] = 7

    assert buf.samples[0, 0] == 0
    assert (buf.width, buf.height) == (6, 4)
    assert buf.bit_depth == 16
    assert buf.pixel_area == pytest.approx(0.65 ** 2)
    with pytest.raises(ValueError):
        buf.samples[0, 0] = 1


def test_buffer_rejects_bad_input():
    with pytest.raises(ConfigurationError):
        GrayscaleBuffer(np.zeros((4, 4, 3), dtype=np.uint8))
    with pytest.raises(ConfigurationError):
        GrayscaleBuffer(np.zeros((4, 4), dtype=bool))
    with pytest.raises(ConfigurationError):
        GrayscaleBuffer(np.zeros((4, 4), dtype=np.uint8), pixel_width=0)


def test_crop_and_clip():
    buf = GrayscaleBuffer(np.arange(100, dtype=np.uint8).reshape(10, 10), pixel_width=2.0)

    cropped = buf.crop(RoiRect(8, 2, 5, 3))

    assert cropped.shape == (3, 2)
    assert cropped.samples[0, 0] == 28
    assert cropped.pixel_width == 2.0
    assert clip_roi(RoiRect(-2, -2, 5, 5), 10, 10) == RoiRect(0, 0, 3, 3)
    with pytest.raises(ConfigurationError):
        buf.crop(RoiRect(20, 20, 5, 5))


def test_check_channels_mismatch():
    a = GrayscaleBuffer(np.zeros((10, 10), dtype=np.uint8))
    b = GrayscaleBuffer(np.zeros((10, 12), dtype=np.uint8))
    c = GrayscaleBuffer(np.zeros((10, 10), dtype=np.uint8), pixel_width=0.5)

    assert check_channels([a, a]) == (10, 10)
    with pytest.raises(ConfigurationError):
        check_channels([a, b])
    with pytest.raises(ConfigurationError):
        check_channels([a, c])
    with pytest.raises(ConfigurationError):
        check_channels([])


def test_load_channels(tmp_path):
    """Channel files sorted by name load as channels 1, 2, ..."""
    field_dir = tmp_path / "field1"
    field_dir.mkdir()
    nuclei = np.zeros((32, 32), dtype=np.uint8)
    nuclei[10:20, 10:20] = 200
    test = np.full((32, 32), 50, dtype=np.uint8)
    io.imsave(str(field_dir / "c1_nuclei.png"), nuclei, check_contrast=False)
    io.imsave(str(field_dir / "c2_test.png"), test, check_contrast=False)

    paths = get_field_filepaths("field1", tmp_path)
    buffers = load_channels(paths, pixel_size_um=0.5)

    assert [p.name for p in paths] == ["c1_nuclei.png", "c2_test.png"]
    assert len(buffers) == 2
    assert buffers[0].samples[15, 15] == 200
    assert buffers[1].samples[0, 0] == 50
    assert buffers[0].pixel_width == 0.5


def test_missing_field(tmp_path):
    with pytest.raises(FileNotFoundError):
        get_field_filepaths("nope", tmp_path)
    with pytest.raises(FileNotFoundError):
        load_channels([tmp_path / "missing.png"])
