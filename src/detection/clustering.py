"""Deterministic k-means in HSV space.

Distance is hue-dominant: chromakey detection cares about which color a
pixel is, not how brightly it is lit.
"""

from dataclasses import dataclass

import numpy as np

from detection.buffer import BYTES_PER_PIXEL, as_byte_array, linear_pixels
from detection.color import HSV, rgb_to_hsv_arrays

MAX_ITERATIONS = 10
DOWNSAMPLE_THRESHOLD = 1_000_000
DOWNSAMPLE_STEP = 4

HUE_WEIGHT = 0.6
SATURATION_WEIGHT = 0.3
VALUE_WEIGHT = 0.1


@dataclass(frozen=True)
class Cluster:
    centroid: HSV
    size: int
    percentage: float


def downsample_if_needed(pixels) -> np.ndarray:
    """RGB samples from an RGBA buffer; every 4th pixel above 1 MP."""
    data = as_byte_array(pixels)
    pixel_count = len(data) // BYTES_PER_PIXEL
    step = DOWNSAMPLE_STEP if pixel_count > DOWNSAMPLE_THRESHOLD else 1
    return linear_pixels(data, step)


def weighted_distances(
    hue: np.ndarray, sat: np.ndarray, val: np.ndarray, centroids: np.ndarray
) -> np.ndarray:
    """(N, k) weighted HSV distances between samples and centroids."""
    h_diff = np.abs(hue[:, None] - centroids[None, :, 0])
    h_dist = np.minimum(h_diff, 360.0 - h_diff) / 180.0
    s_dist = np.abs(sat[:, None] - centroids[None, :, 1])
    v_dist = np.abs(val[:, None] - centroids[None, :, 2])
    return HUE_WEIGHT * h_dist + SATURATION_WEIGHT * s_dist + VALUE_WEIGHT * v_dist


class KMeans:
    def __init__(self, k: int, max_iterations: int = MAX_ITERATIONS):
        self.k = k
        self.max_iterations = max_iterations

    def find_clusters(self, pixels, width: int, height: int) -> list[Cluster]:
        """Cluster the buffer's pixels. Returns clusters sorted by descending size.

        width and height are accepted for interface symmetry with the other
        engines; sampling walks the buffer linearly.
        """
        samples = downsample_if_needed(pixels)
        n = samples.shape[0]
        if n == 0 or self.k <= 0:
            return []

        hue, sat, val = rgb_to_hsv_arrays(samples)
        hsv = np.stack([hue, sat, val], axis=-1)

        seed_idx = [(n * (i + 1)) // (self.k + 1) for i in range(self.k)]
        centroids = hsv[seed_idx].copy()

        assignments = np.zeros(n, dtype=np.int64)
        sizes = np.zeros(self.k, dtype=np.int64)

        for _ in range(self.max_iterations):
            # argmin keeps the first centroid on ties
            best = np.argmin(weighted_distances(hue, sat, val, centroids), axis=1)
            changes = int(np.count_nonzero(best != assignments))
            assignments = best
            sizes = np.bincount(assignments, minlength=self.k)

            if changes == 0:
                break

            for c in range(self.k):
                if sizes[c] > 0:
                    centroids[c] = hsv[assignments == c].mean(axis=0)

        clusters = [
            Cluster(
                centroid=HSV(float(c[0]), float(c[1]), float(c[2])),
                size=int(sizes[i]),
                percentage=int(sizes[i]) / n,
            )
            for i, c in enumerate(centroids)
        ]
        return sorted(clusters, key=lambda cl: -cl.size)
