"""RGBA pixel buffer access with bounds checks.

Buffers are row-major RGBA, 4 bytes per pixel, alpha ignored. The byte
length is not trusted to match width * height: any pixel whose RGB bytes
fall outside the buffer is skipped rather than raising.
"""

import numpy as np

from detection.color import RGB

BYTES_PER_PIXEL = 4


def as_byte_array(pixels) -> np.ndarray:
    """Flat uint8 view of a bytes-like object or numpy array (no copy when possible)."""
    if isinstance(pixels, np.ndarray):
        return np.ascontiguousarray(pixels, dtype=np.uint8).reshape(-1)
    return np.frombuffer(memoryview(pixels).cast("B"), dtype=np.uint8)


def pixel_at(pixels: np.ndarray, width: int, height: int, x: int, y: int) -> RGB | None:
    """Read one pixel. Returns None when (x, y) or its bytes are out of range."""
    if x < 0 or y < 0 or x >= width or y >= height:
        return None
    idx = (y * width + x) * BYTES_PER_PIXEL
    if idx + 2 >= len(pixels):
        return None
    return RGB(int(pixels[idx]), int(pixels[idx + 1]), int(pixels[idx + 2]))


def gather_pixels(
    pixels: np.ndarray, width: int, height: int, xs: np.ndarray, ys: np.ndarray
) -> np.ndarray:
    """Vectorized pixel_at over coordinate arrays.

    Returns an (N, 3) uint8 array of the reachable pixels, in coordinate
    order. Unreachable coordinates are dropped.
    """
    xs = np.asarray(xs, dtype=np.int64).ravel()
    ys = np.asarray(ys, dtype=np.int64).ravel()
    in_frame = (xs >= 0) & (ys >= 0) & (xs < width) & (ys < height)
    idx = (ys[in_frame] * width + xs[in_frame]) * BYTES_PER_PIXEL
    idx = idx[idx + 2 < len(pixels)]
    if idx.size == 0:
        return np.empty((0, 3), dtype=np.uint8)
    return np.stack([pixels[idx], pixels[idx + 1], pixels[idx + 2]], axis=-1)


def reachable_extent(pixels: np.ndarray, width: int, height: int) -> tuple[int, int]:
    """(cols, rows) bounding every pixel whose RGB bytes lie inside the buffer.

    Never larger than (width, height), so coordinate grids can be sized by
    the buffer rather than by the declared frame.
    """
    if width <= 0 or height <= 0:
        return 0, 0
    # pixel p is reachable when p * 4 + 2 < len(pixels)
    reachable = max(0, (len(pixels) - 3) // BYTES_PER_PIXEL + 1)
    rows = (reachable + width - 1) // width
    return min(width, reachable), min(height, rows)


def grid_pixels(
    pixels: np.ndarray, width: int, height: int, stride: int = 1
) -> np.ndarray:
    """All reachable pixels on a (stride x stride) grid, row by row."""
    cols, rows = reachable_extent(pixels, width, height)
    if cols == 0 or rows == 0:
        return np.empty((0, 3), dtype=np.uint8)
    ys, xs = np.meshgrid(
        np.arange(0, rows, stride), np.arange(0, cols, stride), indexing="ij"
    )
    return gather_pixels(pixels, width, height, xs, ys)


def linear_pixels(pixels: np.ndarray, step: int = 1) -> np.ndarray:
    """Every step-th complete RGB triple in buffer order, ignoring dimensions."""
    pixel_count = len(pixels) // BYTES_PER_PIXEL
    idx = np.arange(0, pixel_count, step, dtype=np.int64) * BYTES_PER_PIXEL
    if idx.size == 0:
        return np.empty((0, 3), dtype=np.uint8)
    return np.stack([pixels[idx], pixels[idx + 1], pixels[idx + 2]], axis=-1)
