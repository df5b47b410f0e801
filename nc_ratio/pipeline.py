"""
Nucleo-cytoplasmic ratio pipeline.

Locates nuclei in one channel, builds a cytoplasmic ring around each of them
and reports, per cell, the mean intensity of a second channel inside the
nucleus, inside the ring, and their ratio.

Per image the analysis moves through

    INIT -> EDGE_CHECKED -> THRESHOLDED -> CLEANED -> LABELED
         -> RINGS_BUILT -> MEASURED -> DONE

and ends in EXCLUDED instead when the edge detector flags the image (with the
skip policy on), a quality gate fails, or the nuclear channel is flat.
Objects are excluded one at a time, in this order: area outside
[min_size_n, max_size_n], contact with the image border, a ring smaller than
min_ring_pixels, a failed measurement. Excluding an object never aborts the
image, and every exclusion is listed in the result.

Only ConfigurationError propagates to the caller.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from nc_ratio import rings, segmentation
from nc_ratio.clusters import PixelCluster
from nc_ratio.edges import EdgeDetector, NullEdgeDetector
from nc_ratio.exceptions import (
    ConfigurationError, DegenerateImageError, EdgeArtifactSkip,
    ImageQualitySkip, MeasurementError
)
from nc_ratio.io_utils import GrayscaleBuffer, RoiRect, check_channels, clip_roi
from nc_ratio.metrics import RegionMeasurer, RegionStats, compute_nc_ratio, physical_area
from nc_ratio.rings import RingExpander
from nc_ratio.segmentation import ContourLabeler, MorphologicalCleaner, Thresholder

logger = logging.getLogger(__name__)


# Default analysis parameters
DEFAULT_PARAMS = {
    'nuclear_channel': 1,  # 1-based channel used to find nuclei
    'test_channel': 2,  # 1-based channel whose nuclear/cytoplasmic ratio is reported
    'min_size_n': 300.0,  # Smallest nuclear area (calibrated units²)
    'max_size_n': 1800.0,  # Largest nuclear area (calibrated units²)
    'skip_images_with_edges': True,  # Skip the whole image when an edge is detected
    'exclude_border_nuclei': True,  # Drop nuclei touching the image border
    'min_ring_pixels': 10,  # Smallest cytoplasmic ring that is still measured
}

# Image-level skip reasons
SKIP_EDGE = 'edge_detected'
SKIP_QUALITY = 'quality_gate'
SKIP_DEGENERATE = 'no_foreground'

# Object-level exclusion reasons
EXCLUDED_TOO_SMALL = 'too_small'
EXCLUDED_TOO_LARGE = 'too_large'
EXCLUDED_BORDER = 'touches_border'
EXCLUDED_RING = 'ring_too_small'
EXCLUDED_MEASUREMENT = 'measurement_error'


class AnalysisState(Enum):
    INIT = 'init'
    EDGE_CHECKED = 'edge_checked'
    THRESHOLDED = 'thresholded'
    CLEANED = 'cleaned'
    LABELED = 'labeled'
    RINGS_BUILT = 'rings_built'
    MEASURED = 'measured'
    DONE = 'done'
    EXCLUDED = 'excluded'


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Parameters for one analysis run.

    Channel indices are 1-based. Sizes are in the calibrated units of the
    nuclear channel, squared. Raises ConfigurationError on invalid values.
    """
    nuclear_channel: int = DEFAULT_PARAMS['nuclear_channel']
    test_channel: int = DEFAULT_PARAMS['test_channel']
    min_size_n: float = DEFAULT_PARAMS['min_size_n']
    max_size_n: float = DEFAULT_PARAMS['max_size_n']
    gap_iterations: int = rings.DEFAULT_PARAMS['gap_iterations']
    thickness_iterations: int = rings.DEFAULT_PARAMS['thickness_iterations']
    skip_images_with_edges: bool = DEFAULT_PARAMS['skip_images_with_edges']
    exclude_border_nuclei: bool = DEFAULT_PARAMS['exclude_border_nuclei']
    min_ring_pixels: int = DEFAULT_PARAMS['min_ring_pixels']
    max_std_dev: Optional[float] = None
    max_mean_intensity: Optional[float] = None
    dark_background: bool = True
    background_radius: float = segmentation.DEFAULT_PARAMS['background_radius']
    blur_sigma: float = segmentation.DEFAULT_PARAMS['blur_sigma']

    def __post_init__(self):
        for name in ('nuclear_channel', 'test_channel'):
            value = getattr(self, name)
            if not isinstance(value, (int, np.integer)) or isinstance(value, bool) or value < 1:
                raise ConfigurationError(f"{name} must be an integer >= 1, got {value!r}")
        if self.min_size_n < 0 or self.max_size_n < self.min_size_n:
            raise ConfigurationError(
                f"Invalid nuclear size range [{self.min_size_n}, {self.max_size_n}]"
            )
        if self.gap_iterations < 0 or self.thickness_iterations < 1:
            raise ConfigurationError(
                "gap_iterations must be >= 0 and thickness_iterations >= 1"
            )
        if self.min_ring_pixels < 1:
            raise ConfigurationError("min_ring_pixels must be >= 1")
        if self.background_radius < 0 or self.blur_sigma < 0:
            raise ConfigurationError("background_radius and blur_sigma must be >= 0")

    @property
    def required_channels(self) -> int:
        return max(self.nuclear_channel, self.test_channel)


@dataclass(frozen=True)
class ObjectRecord:
    """One measured cell: nucleus, its ring and the intensity ratio."""
    index: int
    nucleus: PixelCluster
    cytoplasm: PixelCluster
    nuclear_stats: RegionStats
    cytoplasmic_stats: RegionStats
    ratio: float
    nuclear_area: float

    @property
    def bbox(self) -> RoiRect:
        return self.nucleus.bbox()


@dataclass(frozen=True)
class ExcludedObject:
    """A detected nucleus that was left out of the results, and why."""
    index: int
    reason: str
    detail: str = ''


@dataclass(frozen=True)
class RunCounters:
    cell_count: int = 0
    object_count: int = 0
    images_analyzed: int = 0
    images_skipped: int = 0


class RunContext:
    """
    Run-level state shared by all images of one run.

    Counters accumulate across images and are only updated once an image's
    analysis has finished, under a lock, so images may be analyzed from
    several threads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters = RunCounters()

    def record_image(self, cells: int, objects: int, skipped: bool = False) -> RunCounters:
        with self._lock:
            c = self._counters
            self._counters = RunCounters(
                cell_count=c.cell_count + cells,
                object_count=c.object_count + objects,
                images_analyzed=c.images_analyzed + 1,
                images_skipped=c.images_skipped + int(skipped),
            )
            return self._counters

    @property
    def counters(self) -> RunCounters:
        with self._lock:
            return self._counters

    @property
    def cell_count(self) -> int:
        return self.counters.cell_count

    @property
    def object_count(self) -> int:
        return self.counters.object_count

    def reset(self):
        with self._lock:
            self._counters = RunCounters()


@dataclass
class AnalysisResult:
    """
    Outcome of analyzing one image.

    records[i].cytoplasm was built from records[i].nucleus; the two cluster
    lists exposed below are index-aligned. Coordinates are in full-image
    coordinates even when a user ROI restricted the analysis.

    objects_detected is every labeled nucleus; objects_counted only those
    that passed the size and border filters, which is what the run's
    object_count accumulates.
    """
    records: List[ObjectRecord] = field(default_factory=list)
    excluded: List[ExcludedObject] = field(default_factory=list)
    skip_reason: Optional[str] = None
    skip_detail: str = ''
    objects_detected: int = 0
    objects_counted: int = 0
    counters: RunCounters = field(default_factory=RunCounters)
    state: AnalysisState = AnalysisState.INIT

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    @property
    def nuclear_clusters(self) -> List[PixelCluster]:
        return [r.nucleus for r in self.records]

    @property
    def cytoplasmic_clusters(self) -> List[PixelCluster]:
        return [r.cytoplasm for r in self.records]

    @property
    def ratios(self) -> List[float]:
        return [r.ratio for r in self.records]

    def to_dataframe(self) -> pd.DataFrame:
        """One row per reported cell."""
        columns = [
            'index', 'x', 'y', 'width', 'height', 'nuclear_area',
            'nuclear_pixels', 'nuclear_mean', 'cytoplasmic_pixels',
            'cytoplasmic_mean', 'ratio'
        ]
        rows = []
        for r in self.records:
            box = r.bbox
            rows.append({
                'index': r.index,
                'x': box.x,
                'y': box.y,
                'width': box.width,
                'height': box.height,
                'nuclear_area': r.nuclear_area,
                'nuclear_pixels': r.nuclear_stats.count,
                'nuclear_mean': r.nuclear_stats.mean,
                'cytoplasmic_pixels': r.cytoplasmic_stats.count,
                'cytoplasmic_mean': r.cytoplasmic_stats.mean,
                'ratio': r.ratio,
            })
        return pd.DataFrame(rows, columns=columns)


class NucleoCytoplasmicRatio:
    """
    Locate nuclei in one channel and compute nuclear/cytoplasmic intensity
    ratios in another.

    Parameters
    ----------
    config : AnalysisConfig, optional
        Run parameters (defaults used when omitted)
    edge_detector : EdgeDetector, optional
        Anything with detect_edge(buffers); defaults to NullEdgeDetector
    context : RunContext, optional
        Holds the run counters; a fresh one is created when omitted
    thresholder, cleaner, labeler, ring_expander, measurer : optional
        Replacements for the individual stages
    """

    name = 'Nuclear-Cytoplasmic Ratio'

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        edge_detector: Optional[EdgeDetector] = None,
        context: Optional[RunContext] = None,
        thresholder: Optional[Thresholder] = None,
        cleaner: Optional[MorphologicalCleaner] = None,
        labeler: Optional[ContourLabeler] = None,
        ring_expander: Optional[RingExpander] = None,
        measurer: Optional[RegionMeasurer] = None
    ):
        self.config = config if config is not None else AnalysisConfig()
        self.edge_detector = edge_detector if edge_detector is not None else NullEdgeDetector()
        self.context = context if context is not None else RunContext()
        self.thresholder = thresholder if thresholder is not None else Thresholder(
            background_radius=self.config.background_radius,
            blur_sigma=self.config.blur_sigma,
            dark_background=self.config.dark_background
        )
        self.cleaner = cleaner if cleaner is not None else MorphologicalCleaner()
        self.labeler = labeler if labeler is not None else ContourLabeler()
        self.ring_expander = ring_expander if ring_expander is not None else RingExpander(
            self.config.gap_iterations, self.config.thickness_iterations
        )
        self.measurer = measurer if measurer is not None else RegionMeasurer()

    def analyze(
        self,
        buffers: Sequence[GrayscaleBuffer],
        user_roi: Optional[RoiRect] = None
    ) -> AnalysisResult:
        """
        Analyze the channels of one imaged field.

        Parameters
        ----------
        buffers : sequence of GrayscaleBuffer
            All channels of the field, channel 1 first
        user_roi : RoiRect, optional
            Restrict the analysis to this rectangle; output coordinates are
            still full-image coordinates

        Returns
        -------
        AnalysisResult
            Records, exclusions, skip reason and the run counters after this
            image

        Raises
        ------
        ConfigurationError
            Too few channels, mismatched channels, or an ROI outside the image.
        """
        self._check_channels(buffers)
        result = AnalysisResult()
        try:
            self._run(buffers, user_roi, result)
        except EdgeArtifactSkip as e:
            self._skip(result, SKIP_EDGE, str(e))
        except ImageQualitySkip as e:
            self._skip(result, SKIP_QUALITY, str(e))
        except DegenerateImageError as e:
            self._skip(result, SKIP_DEGENERATE, str(e))
        else:
            result.state = AnalysisState.DONE
            result.counters = self.context.record_image(
                cells=len(result.records), objects=result.objects_counted
            )
            logger.info(
                "%d of %d detected nuclei reported (%d excluded)",
                len(result.records), result.objects_detected, len(result.excluded)
            )
        return result

    def analyze_stacks(
        self,
        stacks: Iterable[Sequence[GrayscaleBuffer]],
        user_roi: Optional[RoiRect] = None,
        max_workers: Optional[int] = None
    ) -> List[AnalysisResult]:
        """
        Analyze several fields, in parallel when max_workers > 1.

        Results come back in input order. Each field is analyzed with its own
        buffers; only the run context is shared.
        """
        stacks = list(stacks)
        if max_workers is None or max_workers <= 1:
            return [self.analyze(stack, user_roi) for stack in stacks]
        with ThreadPoolExecutor(max_workers=max_workers) as ex:
            return list(ex.map(lambda stack: self.analyze(stack, user_roi), stacks))

    def _check_channels(self, buffers: Sequence[GrayscaleBuffer]):
        required = self.config.required_channels
        if len(buffers) < required:
            raise ConfigurationError(
                f"Need at least {required} channels (nuclear channel "
                f"{self.config.nuclear_channel}, test channel "
                f"{self.config.test_channel}), got {len(buffers)}"
            )
        check_channels(buffers)

    def _skip(self, result: AnalysisResult, reason: str, detail: str):
        logger.info("Skip image: %s", detail)
        result.state = AnalysisState.EXCLUDED
        result.skip_reason = reason
        result.skip_detail = detail
        result.records = []
        result.excluded = []
        result.counters = self.context.record_image(cells=0, objects=0, skipped=True)

    def _run(
        self,
        buffers: Sequence[GrayscaleBuffer],
        user_roi: Optional[RoiRect],
        result: AnalysisResult
    ):
        config = self.config
        nuclear = buffers[config.nuclear_channel - 1]
        test = buffers[config.test_channel - 1]

        region = self.edge_detector.detect_edge(buffers)
        result.state = AnalysisState.EDGE_CHECKED
        if region is not None and config.skip_images_with_edges:
            raise EdgeArtifactSkip("Edge detected", region=region)

        dx = dy = 0
        exclude = region.mask if region is not None else None
        if user_roi is not None:
            roi = clip_roi(user_roi, nuclear.width, nuclear.height)
            nuclear = nuclear.crop(roi)
            test = test.crop(roi)
            if region is not None:
                exclude = region.crop(roi).mask
            dx, dy = roi.x, roi.y

        self._check_quality(nuclear)

        mask = self.thresholder.threshold(nuclear, exclude=exclude)
        if mask is None:
            raise DegenerateImageError("Nuclear channel has no separable foreground")
        result.state = AnalysisState.THRESHOLDED

        mask = self.cleaner.clean(mask)
        result.state = AnalysisState.CLEANED

        nuclei = self.labeler.label(mask, connectivity=4)
        result.objects_detected = len(nuclei)
        result.state = AnalysisState.LABELED
        logger.debug("Labeled %d nuclear objects", len(nuclei))

        width, height = nuclear.width, nuclear.height
        candidates = []
        for index, nucleus in enumerate(nuclei):
            area = physical_area(nucleus, nuclear)
            if area < config.min_size_n:
                result.excluded.append(ExcludedObject(
                    index, EXCLUDED_TOO_SMALL, f"area {area:.1f} < {config.min_size_n}"
                ))
                continue
            if area > config.max_size_n:
                result.excluded.append(ExcludedObject(
                    index, EXCLUDED_TOO_LARGE, f"area {area:.1f} > {config.max_size_n}"
                ))
                continue
            if config.exclude_border_nuclei and nucleus.touches_border(width, height):
                result.excluded.append(ExcludedObject(index, EXCLUDED_BORDER))
                continue
            result.objects_counted += 1
            ring = self.ring_expander.rings_for(nucleus, width, height)
            if len(ring) < config.min_ring_pixels:
                result.excluded.append(ExcludedObject(
                    index, EXCLUDED_RING, f"{len(ring)} < {config.min_ring_pixels} pixels"
                ))
                continue
            candidates.append((index, nucleus, ring, area))
        result.state = AnalysisState.RINGS_BUILT

        for index, nucleus, ring, area in candidates:
            try:
                n_stats = self.measurer.measure(nucleus, test)
                c_stats = self.measurer.measure(ring, test)
                ratio = compute_nc_ratio(n_stats, c_stats)
            except MeasurementError as e:
                logger.debug("Object %d excluded: %s", index, e)
                result.excluded.append(ExcludedObject(index, EXCLUDED_MEASUREMENT, str(e)))
                continue
            result.records.append(ObjectRecord(
                index=index,
                nucleus=nucleus.offset(dx, dy),
                cytoplasm=ring.offset(dx, dy),
                nuclear_stats=n_stats,
                cytoplasmic_stats=c_stats,
                ratio=ratio,
                nuclear_area=area,
            ))
        result.state = AnalysisState.MEASURED

    def _check_quality(self, nuclear: GrayscaleBuffer):
        config = self.config
        if config.max_std_dev is None and config.max_mean_intensity is None:
            return
        samples = nuclear.samples.astype(np.float64)
        std_dev = float(samples.std())
        mean = float(samples.mean())
        if config.max_std_dev is not None and std_dev > config.max_std_dev:
            raise ImageQualitySkip(
                f"Std. dev. of image ({std_dev:.2f}) is higher than the limit "
                f"({config.max_std_dev})"
            )
        if config.max_mean_intensity is not None and mean > config.max_mean_intensity:
            raise ImageQualitySkip(
                f"Mean intensity of image ({mean:.2f}) is higher than the limit "
                f"({config.max_mean_intensity})"
            )
