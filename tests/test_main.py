"""
End-to-end test of the command line on a small synthetic data set.
"""

import numpy as np
import pandas as pd
from skimage import io
from skimage.draw import disk

from nc_ratio.main import build_config, main, parse_args


def write_field(field_dir, centers):
    field_dir.mkdir(parents=True)
    nuclei = np.full((100, 100), 10, dtype=np.uint8)
    test = np.full((100, 100), 40, dtype=np.uint8)
    for center in centers:
        rr, cc = disk(center, 10, shape=nuclei.shape)
        nuclei[rr, cc] = 200
        test[rr, cc] = 120
    io.imsave(str(field_dir / "c1.png"), nuclei, check_contrast=False)
    io.imsave(str(field_dir / "c2.png"), test, check_contrast=False)


def test_main_writes_results(tmp_path):
    data_root = tmp_path / "data"
    output_root = tmp_path / "out"
    write_field(data_root / "A1", [(30, 30), (70, 65)])
    write_field(data_root / "B2", [(50, 50)])

    main([
        "--data-root", str(data_root),
        "--output-root", str(output_root),
        "--min-size", "50", "--max-size", "5000",
        "--qc-images",
    ])

    results = pd.read_csv(output_root / "results.csv")
    summary = pd.read_csv(output_root / "summary.csv")
    assert list(summary["field_id"]) == ["A1", "B2"]
    assert list(summary["cells_reported"]) == [2, 1]
    assert len(results) == 3
    assert np.allclose(results["ratio"], 3.0, rtol=0.1)
    assert (output_root / "A1_nc_overlay.png").exists()


def test_filter_flags_reach_config():
    config = build_config(parse_args(["--background-radius", "0", "--blur-sigma", "1.5"]))

    assert config.background_radius == 0.0
    assert config.blur_sigma == 1.5
    assert build_config(parse_args([])).blur_sigma == 3.0
