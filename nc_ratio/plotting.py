"""
Plotting utilities for QC overlays.

This module draws the nuclear and cytoplasmic clusters of an analysis result
on top of a channel image, for visual quality control of the segmentation.
"""

from typing import Optional, Sequence, Tuple
import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from nc_ratio.clusters import PixelCluster
from nc_ratio.pipeline import AnalysisResult


def to_rgb(image: np.ndarray) -> np.ndarray:
    """Scale a grayscale image to 0-1 and stack it into RGB."""
    image = np.asarray(image, dtype=np.float64)
    lo, hi = image.min(), image.max()
    if hi > lo:
        image = (image - lo) / (hi - lo)
    else:
        image = np.zeros_like(image)
    return np.stack([image, image, image], axis=-1)


def overlay_clusters(
    image_rgb: np.ndarray,
    clusters: Sequence[PixelCluster],
    color: Tuple[float, float, float],
    alpha: float = 0.4
) -> np.ndarray:
    """
    Blend clusters into an RGB image with a semi-transparent fill.

    Parameters
    ----------
    image_rgb : np.ndarray
        RGB image (values 0-1), shape (height, width, 3)
    clusters : sequence of PixelCluster
        Clusters to draw; coordinates outside the image are ignored
    color : tuple
        RGB fill color (values 0-1)
    alpha : float
        Opacity of the fill

    Returns
    -------
    np.ndarray
        New RGB image with the overlay
    """
    height, width = image_rgb.shape[:2]
    overlay = image_rgb.copy()
    mask = np.zeros((height, width), dtype=bool)
    for cluster in clusters:
        xs, ys = cluster.coordinates()
        keep = (xs >= 0) & (ys >= 0) & (xs < width) & (ys < height)
        mask[ys[keep], xs[keep]] = True
    overlay[mask] = alpha * np.array(color) + (1 - alpha) * overlay[mask]
    return overlay


def plot_result_overlay(
    image: np.ndarray,
    result: AnalysisResult,
    output_path: str,
    title: Optional[str] = None,
    nucleus_color: Tuple[float, float, float] = (1.0, 0.0, 0.0),
    cytoplasm_color: Tuple[float, float, float] = (0.0, 1.0, 0.0),
    annotate: bool = True
) -> None:
    """
    Save a QC image with nuclei and cytoplasmic rings drawn on a channel.

    Parameters
    ----------
    image : np.ndarray
        Grayscale channel (full image, same coordinates as the result)
    result : AnalysisResult
        Analysis result to draw
    output_path : str
        Where to write the PNG
    title : str, optional
        Figure title
    annotate : bool
        Label each cell with its index and ratio
    """
    rgb = to_rgb(image)
    rgb = overlay_clusters(rgb, result.cytoplasmic_clusters, cytoplasm_color)
    rgb = overlay_clusters(rgb, result.nuclear_clusters, nucleus_color)

    fig, ax = plt.subplots(figsize=(8, 8))
    ax.imshow(rgb)
    if annotate:
        for record in result.records:
            box = record.bbox
            ax.text(
                box.x + box.width / 2, box.y + box.height / 2,
                f"{record.index}: {record.ratio:.2f}",
                color='yellow', fontsize=7, ha='center', va='center'
            )
    if title is None:
        title = f"{len(result.records)} cells"
        if result.skipped:
            title = f"skipped ({result.skip_reason})"
    ax.set_title(title)
    ax.axis('off')
    fig.tight_layout()
    fig.savefig(output_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
