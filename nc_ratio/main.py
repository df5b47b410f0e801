"""
Command line entry point for nucleo-cytoplasmic ratio analysis.

Each field (one stage position) is a subdirectory of the data root holding
one image file per channel; files sorted by name are channels 1, 2, ...
For every field the pipeline:

1. Loads the channels (io_utils.py) with the given pixel size
2. Segments nuclei in the nuclear channel (segmentation.py)
3. Builds a cytoplasmic ring around each nucleus (rings.py)
4. Measures the test channel in nucleus and ring (metrics.py)
5. Reports one row per cell with the nuclear/cytoplasmic ratio

Results go to results.csv in the output root, together with a per-field
summary and, optionally, QC overlays.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List

import pandas as pd

from nc_ratio.exceptions import ConfigurationError
from nc_ratio.io_utils import RoiRect, get_field_filepaths, load_channels
from nc_ratio.pipeline import AnalysisConfig, NucleoCytoplasmicRatio, RunContext


def build_config(args: argparse.Namespace) -> AnalysisConfig:
    """Map command line arguments onto an AnalysisConfig."""
    return AnalysisConfig(
        nuclear_channel=args.nuclear_channel,
        test_channel=args.test_channel,
        min_size_n=args.min_size,
        max_size_n=args.max_size,
        gap_iterations=args.gap,
        thickness_iterations=args.thickness,
        exclude_border_nuclei=not args.keep_border_nuclei,
        min_ring_pixels=args.min_ring_pixels,
        max_std_dev=args.max_std_dev,
        max_mean_intensity=args.max_mean,
        dark_background=not args.light_background,
        background_radius=args.background_radius,
        blur_sigma=args.blur_sigma,
    )


def list_fields(data_root: Path) -> List[str]:
    return sorted(p.name for p in data_root.iterdir() if p.is_dir())


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Nuclear/cytoplasmic intensity ratios from multi-channel fluorescence images",
        epilog="Fields are analyzed without an edge detector, so the edge skip "
               "policy never applies here."
    )
    parser.add_argument(
        '--data-root',
        type=str,
        default='data',
        help='Root directory containing one subdirectory per field (default: data)'
    )
    parser.add_argument(
        '--field-ids',
        type=str,
        nargs='+',
        default=None,
        help='Fields to analyze (default: every subdirectory of the data root)'
    )
    parser.add_argument(
        '--output-root',
        type=str,
        default='outputs',
        help='Output directory for results CSV and QC images (default: outputs)'
    )
    parser.add_argument(
        '--pixel-size',
        type=float,
        default=1.0,
        help='Pixel size in microns per pixel (default: 1.0)'
    )
    parser.add_argument('--nuclear-channel', type=int, default=1,
                        help='1-based channel used to find nuclei (default: 1)')
    parser.add_argument('--test-channel', type=int, default=2,
                        help='1-based channel whose ratio is reported (default: 2)')
    parser.add_argument('--min-size', type=float, default=300.0,
                        help='Minimum nuclear area in um^2 (default: 300)')
    parser.add_argument('--max-size', type=float, default=1800.0,
                        help='Maximum nuclear area in um^2 (default: 1800)')
    parser.add_argument('--gap', type=int, default=2,
                        help='Dilations between nucleus and ring (default: 2)')
    parser.add_argument('--thickness', type=int, default=4,
                        help='Dilations making up the ring (default: 4)')
    parser.add_argument('--min-ring-pixels', type=int, default=10,
                        help='Smallest ring that is still measured (default: 10)')
    parser.add_argument('--max-std-dev', type=float, default=None,
                        help='Skip fields whose nuclear channel std. dev. exceeds this')
    parser.add_argument('--max-mean', type=float, default=None,
                        help='Skip fields whose nuclear channel mean exceeds this')
    parser.add_argument('--keep-border-nuclei', action='store_true',
                        help='Do not drop nuclei touching the image border')
    parser.add_argument('--light-background', action='store_true',
                        help='Nuclei are dark on a light background')
    parser.add_argument('--background-radius', type=float, default=5.0,
                        help='Background subtraction radius in pixels, 0 to disable (default: 5)')
    parser.add_argument('--blur-sigma', type=float, default=3.0,
                        help='Gaussian blur sigma before thresholding (default: 3.0)')
    parser.add_argument('--roi', type=int, nargs=4, metavar=('X', 'Y', 'W', 'H'),
                        default=None, help='Restrict analysis to this rectangle')
    parser.add_argument('--workers', type=int, default=1,
                        help='Number of fields analyzed in parallel (default: 1)')
    parser.add_argument('--qc-images', action='store_true',
                        help='Save overlay images of nuclei and rings')
    parser.add_argument('--verbose', action='store_true', help='Log debug output')
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point for the pipeline."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    data_root = Path(args.data_root)
    output_root = Path(args.output_root)
    if not data_root.exists():
        print(f"Error: Data root directory does not exist: {data_root}")
        sys.exit(1)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    field_ids = args.field_ids or list_fields(data_root)
    if not field_ids:
        print(f"Error: No fields found in {data_root}")
        sys.exit(1)

    user_roi = RoiRect(*args.roi) if args.roi else None
    analysis = NucleoCytoplasmicRatio(config, context=RunContext())

    print(f"Loading {len(field_ids)} field(s) from {data_root}...")
    stacks = []
    for field_id in field_ids:
        try:
            stacks.append(load_channels(get_field_filepaths(field_id, data_root), args.pixel_size))
        except (FileNotFoundError, ConfigurationError) as e:
            print(f"Error loading {field_id}: {e}")
            sys.exit(1)

    print("Analyzing...")
    try:
        results = analysis.analyze_stacks(stacks, user_roi=user_roi, max_workers=args.workers)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    output_root.mkdir(parents=True, exist_ok=True)
    frames = []
    summary = []
    for field_id, stack, result in zip(field_ids, stacks, results):
        if result.skipped:
            print(f"  {field_id}: skipped ({result.skip_reason}) {result.skip_detail}")
        else:
            print(f"  {field_id}: {len(result.records)} cells, "
                  f"{len(result.excluded)} excluded of {result.objects_detected} nuclei")
        df = result.to_dataframe()
        df.insert(0, 'field_id', field_id)
        frames.append(df)
        summary.append({
            'field_id': field_id,
            'skip_reason': result.skip_reason or '',
            'nuclei_detected': result.objects_detected,
            'cells_reported': len(result.records),
            'excluded': len(result.excluded),
        })

        if args.qc_images:
            from nc_ratio.plotting import plot_result_overlay
            qc_path = output_root / f"{field_id}_nc_overlay.png"
            plot_result_overlay(
                stack[config.test_channel - 1].samples, result, str(qc_path), title=field_id
            )

    results_df = pd.concat(frames, ignore_index=True)
    results_path = output_root / 'results.csv'
    results_df.to_csv(results_path, index=False)
    summary_path = output_root / 'summary.csv'
    pd.DataFrame(summary).to_csv(summary_path, index=False)

    counters = analysis.context.counters
    print("\n" + "=" * 60)
    print(f"Cells counted:   {counters.cell_count}")
    print(f"Objects counted: {counters.object_count}")
    print(f"Fields skipped:  {counters.images_skipped} of {counters.images_analyzed}")
    if not results_df.empty:
        print(f"Median N/C ratio: {results_df['ratio'].median():.4f}")
    print("=" * 60)
    print(f"\nResults saved to {results_path}")
    print(f"Summary saved to {summary_path}")


if __name__ == '__main__':
    main()
