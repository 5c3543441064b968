"""Detection orchestrator — full-frame, edge and cluster strategies.

Order of work:
1. Full-frame histogram. Returned immediately when its confidence clears
   config.confidence_threshold.
2. Otherwise edge-ring histogram and k-means clustering also run, and the
   candidate with the strictly highest confidence wins (earlier strategy
   on ties).
"""

import logging

import numpy as np

from detection.buffer import (
    as_byte_array,
    gather_pixels,
    grid_pixels,
    reachable_extent,
)
from detection.clustering import KMeans
from detection.color import is_chromakey_candidate, to_rgb
from detection.config import DetectionConfig
from detection.histogram import ColorHistogram
from detection.result import ChromakeyResult, DetectionMethod

logger = logging.getLogger(__name__)

# Full-frame sampling stride by frame size (pixels)
STRIDE_1_MAX_PIXELS = 100_000
STRIDE_2_MAX_PIXELS = 500_000

EDGE_MIN_PERCENTAGE = 0.05
CLUSTER_COUNT = 3


def full_frame_stride(width: int, height: int) -> int:
    total = width * height
    if total > STRIDE_2_MAX_PIXELS:
        return 4
    if total > STRIDE_1_MAX_PIXELS:
        return 2
    return 1


def _peak_result(histogram: ColorHistogram, min_percentage: float, method: DetectionMethod):
    peaks = histogram.find_peaks(min_percentage)
    if not peaks:
        return None
    best = peaks[0]
    return ChromakeyResult(
        color=best.average_color,
        confidence=min(best.percentage, 1.0),
        coverage=best.percentage,
        hue=best.hue,
        method=method,
    )


def analyze_full_frame(
    pixels, width: int, height: int, config: DetectionConfig
) -> ChromakeyResult | None:
    data = as_byte_array(pixels)
    histogram = ColorHistogram()
    histogram.add_pixels(grid_pixels(data, width, height, full_frame_stride(width, height)))
    return _peak_result(histogram, config.min_area_percentage, DetectionMethod.HYBRID)


def _ascending(start: int, stop: int, limit: int) -> np.ndarray:
    return np.arange(start, min(stop, limit), dtype=np.int64)


def _descending(top: int, count: int, limit: int) -> np.ndarray:
    """top, top - 1, ... (count values), keeping only those below limit."""
    return np.arange(min(top + 1, limit) - 1, top - count, -1, dtype=np.int64)


def edge_coordinates(
    width: int,
    height: int,
    edge_percentage: float,
    extent: tuple[int, int] | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """(xs, ys) of the border ring: top and bottom rows, then left and right columns.

    Rows and columns overlapping on frames narrower than twice the ring
    are sampled twice. extent, a (cols, rows) bound from
    buffer.reachable_extent, drops coordinates past the end of the buffer
    before any grid is built.
    """
    border_w = int(width * edge_percentage)
    border_h = int(height * edge_percentage)
    if width <= 0 or height <= 0:
        empty = np.empty(0, dtype=np.int64)
        return empty, empty
    max_cols, max_rows = extent if extent is not None else (width, height)

    xs_parts = []
    ys_parts = []

    cols = _ascending(0, width, max_cols)
    for row_ys in (
        _ascending(0, border_h, max_rows),
        _descending(height - 1, border_h, max_rows),
    ):
        ys, xs = np.meshgrid(row_ys, cols, indexing="ij")
        xs_parts.append(xs.ravel())
        ys_parts.append(ys.ravel())

    rows = _ascending(border_h, max(border_h, height - border_h), max_rows)
    for col_xs in (
        _ascending(0, border_w, max_cols),
        _descending(width - 1, border_w, max_cols),
    ):
        ys, xs = np.meshgrid(rows, col_xs, indexing="ij")
        xs_parts.append(xs.ravel())
        ys_parts.append(ys.ravel())

    return np.concatenate(xs_parts), np.concatenate(ys_parts)


def analyze_edges(
    pixels, width: int, height: int, config: DetectionConfig
) -> ChromakeyResult | None:
    data = as_byte_array(pixels)
    xs, ys = edge_coordinates(
        width,
        height,
        config.edge_sample_percentage,
        reachable_extent(data, width, height),
    )
    histogram = ColorHistogram()
    histogram.add_pixels(gather_pixels(data, width, height, xs, ys))
    return _peak_result(histogram, EDGE_MIN_PERCENTAGE, DetectionMethod.EDGE)


def analyze_clusters(
    pixels, width: int, height: int, config: DetectionConfig
) -> ChromakeyResult | None:
    clusters = KMeans(CLUSTER_COUNT).find_clusters(pixels, width, height)
    for cluster in clusters:
        if is_chromakey_candidate(cluster.centroid):
            return ChromakeyResult(
                color=to_rgb(cluster.centroid),
                confidence=min(cluster.percentage, 1.0),
                coverage=cluster.percentage,
                hue=cluster.centroid.h,
                method=DetectionMethod.CLUSTER,
            )
    return None


def choose_best_result(*candidates: ChromakeyResult | None) -> ChromakeyResult | None:
    """Highest confidence wins; the earlier candidate is kept on ties."""
    best = None
    for candidate in candidates:
        if candidate is None:
            continue
        if best is None or candidate.confidence > best.confidence:
            best = candidate
    return best


def detect_chromakey(
    pixels, width: int, height: int, config: DetectionConfig | None = None
) -> ChromakeyResult | None:
    """Detect the dominant key color in an RGBA buffer.

    Args:
        pixels: RGBA bytes (bytes-like or uint8 numpy array), row-major.
        width:  Logical frame width in pixels.
        height: Logical frame height in pixels.
        config: Detection thresholds (defaults if None).

    Returns:
        The best ChromakeyResult, or None when nothing was detected.
    """
    if config is None:
        config = DetectionConfig()

    full = analyze_full_frame(pixels, width, height, config)
    if full is not None and full.confidence > config.confidence_threshold:
        logger.debug(
            "Full-frame detection hue=%.1f confidence=%.3f", full.hue, full.confidence
        )
        return full

    edge = analyze_edges(pixels, width, height, config)
    cluster = analyze_clusters(pixels, width, height, config)
    best = choose_best_result(full, edge, cluster)

    if best is None:
        logger.debug("No chromakey detected in %dx%d frame", width, height)
    else:
        logger.debug(
            "Fused detection method=%s hue=%.1f confidence=%.3f",
            best.method.value,
            best.hue,
            best.confidence,
        )
    return best
