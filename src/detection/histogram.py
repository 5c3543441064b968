"""Hue histogram — bucketed HSV statistics and peak extraction.

Real chromakey footage spreads the key color over 10-40 hue degrees, so a
confirmed peak is grown outward into a contiguous region (bounded by a
valley threshold and a 15 degree cap) before coverage is measured.
"""

from dataclasses import dataclass

import numpy as np

from detection.color import RGB, rgb_to_hsv_arrays, to_hsv

HUE_BINS = 360
SATURATION_BINS = 100
VALUE_BINS = 100

# Pixels below this saturation are counted as grayscale, not by hue
GRAYSCALE_SATURATION = 0.15

PEAK_WINDOW = 5
MAX_EXPANSION = 15
SMOOTHING_RADIUS = 2
VALLEY_DIVISOR = 5


@dataclass(frozen=True)
class Peak:
    hue: float
    count: int
    percentage: float
    average_color: RGB

    @property
    def is_grayscale(self) -> bool:
        return to_hsv(self.average_color).s < GRAYSCALE_SATURATION


class RGBAccumulator:
    """Running RGB sums. Python ints, so no overflow on large frames."""

    __slots__ = ("r_sum", "g_sum", "b_sum", "count")

    def __init__(self):
        self.r_sum = 0
        self.g_sum = 0
        self.b_sum = 0
        self.count = 0

    def add(self, rgb: RGB):
        self.r_sum += rgb.r
        self.g_sum += rgb.g
        self.b_sum += rgb.b
        self.count += 1

    def add_sums(self, r_sum: int, g_sum: int, b_sum: int, count: int):
        self.r_sum += r_sum
        self.g_sum += g_sum
        self.b_sum += b_sum
        self.count += count

    def average(self) -> RGB:
        if self.count == 0:
            return RGB(0, 0, 0)
        return RGB(
            self.r_sum // self.count,
            self.g_sum // self.count,
            self.b_sum // self.count,
        )


class ColorHistogram:
    def __init__(self):
        self.hue_bins = [0] * HUE_BINS
        self.rgb_accumulators = [RGBAccumulator() for _ in range(HUE_BINS)]
        self.saturation_bins = [0] * SATURATION_BINS
        self.value_bins = [0] * VALUE_BINS
        self.grayscale_accumulator = RGBAccumulator()
        self.grayscale_count = 0
        self.total_pixels = 0

    def add_pixel(self, rgb: RGB):
        hsv = to_hsv(rgb)

        if hsv.s < GRAYSCALE_SATURATION:
            value_idx = min(int(hsv.v * 99.0), VALUE_BINS - 1)
            self.value_bins[value_idx] += 1
            self.grayscale_accumulator.add(rgb)
            self.grayscale_count += 1
            self.total_pixels += 1
            return

        hue_idx = min(int(hsv.h), HUE_BINS - 1)
        sat_idx = min(int(hsv.s * 99.0), SATURATION_BINS - 1)
        self.hue_bins[hue_idx] += 1
        self.rgb_accumulators[hue_idx].add(rgb)
        self.saturation_bins[sat_idx] += 1
        self.total_pixels += 1

    def add_pixels(self, rgb: np.ndarray):
        """Bulk add_pixel over an (N, 3) uint8 array."""
        if rgb.size == 0:
            return
        hue, sat, val = rgb_to_hsv_arrays(rgb)
        channels = rgb.astype(np.int64)
        gray = sat < GRAYSCALE_SATURATION

        if gray.any():
            value_idx = np.minimum((val[gray] * 99.0).astype(np.int64), VALUE_BINS - 1)
            for i, n in enumerate(np.bincount(value_idx, minlength=VALUE_BINS)):
                self.value_bins[i] += int(n)
            g_sums = channels[gray].sum(axis=0)
            n_gray = int(gray.sum())
            self.grayscale_accumulator.add_sums(
                int(g_sums[0]), int(g_sums[1]), int(g_sums[2]), n_gray
            )
            self.grayscale_count += n_gray

        colored = ~gray
        if colored.any():
            hue_idx = np.minimum(hue[colored].astype(np.int64), HUE_BINS - 1)
            sat_idx = np.minimum(
                (sat[colored] * 99.0).astype(np.int64), SATURATION_BINS - 1
            )
            counts = np.bincount(hue_idx, minlength=HUE_BINS)
            r_sums = np.bincount(hue_idx, weights=channels[colored, 0], minlength=HUE_BINS)
            g_sums = np.bincount(hue_idx, weights=channels[colored, 1], minlength=HUE_BINS)
            b_sums = np.bincount(hue_idx, weights=channels[colored, 2], minlength=HUE_BINS)
            for i in np.nonzero(counts)[0]:
                n = int(counts[i])
                self.hue_bins[i] += n
                self.rgb_accumulators[i].add_sums(
                    int(round(r_sums[i])), int(round(g_sums[i])), int(round(b_sums[i])), n
                )
            for i, n in enumerate(np.bincount(sat_idx, minlength=SATURATION_BINS)):
                self.saturation_bins[i] += int(n)

        self.total_pixels += int(rgb.shape[0])

    def _smoothed(self, center: int) -> int:
        total = 0
        for offset in range(-SMOOTHING_RADIUS, SMOOTHING_RADIUS + 1):
            total += self.hue_bins[(center + offset) % HUE_BINS]
        return total // (2 * SMOOTHING_RADIUS + 1)

    def _is_local_max(self, i: int) -> bool:
        count = self.hue_bins[i]
        for j in range(1, PEAK_WINDOW + 1):
            if (
                self.hue_bins[(i - j) % HUE_BINS] >= count
                or self.hue_bins[(i + j) % HUE_BINS] >= count
            ):
                return False
        return True

    def _grow_region(self, i: int) -> Peak:
        count = self.hue_bins[i]
        region_count = count
        region = RGBAccumulator()
        acc = self.rgb_accumulators[i]
        region.add_sums(acc.r_sum, acc.g_sum, acc.b_sum, acc.count)

        valley = count // VALLEY_DIVISOR
        for direction in (-1, 1):
            for j in range(1, MAX_EXPANSION + 1):
                idx = (i + direction * j) % HUE_BINS
                if self._smoothed(idx) < valley:
                    break
                region_count += self.hue_bins[idx]
                acc = self.rgb_accumulators[idx]
                region.add_sums(acc.r_sum, acc.g_sum, acc.b_sum, acc.count)

        if region.count > 0:
            avg_color = region.average()
        else:
            avg_color = self.rgb_accumulators[i].average()

        return Peak(
            hue=float(i),
            count=region_count,
            percentage=region_count / self.total_pixels,
            average_color=avg_color,
        )

    def find_peaks(self, min_percentage: float) -> list[Peak]:
        """Hue peaks covering at least min_percentage of sampled pixels.

        Colorful peaks come before the (at most one) grayscale peak, each
        group ordered by descending count.
        """
        if self.total_pixels == 0:
            return []

        threshold = int(self.total_pixels * min_percentage)
        peaks = [
            self._grow_region(i)
            for i in range(HUE_BINS)
            if self.hue_bins[i] >= threshold and self._is_local_max(i)
        ]

        grayscale_percentage = self.grayscale_count / self.total_pixels
        if grayscale_percentage > min_percentage and self.grayscale_count > 0:
            avg_color = self.grayscale_accumulator.average()
            peaks.append(
                Peak(
                    hue=to_hsv(avg_color).h,
                    count=self.grayscale_count,
                    percentage=grayscale_percentage,
                    average_color=avg_color,
                )
            )

        return sorted(peaks, key=lambda p: (p.is_grayscale, -p.count))
