"""RGB <-> HSV conversion and chromakey candidacy."""

from dataclasses import dataclass

import numpy as np

# Clustering-only candidacy filter. The histogram engine has its own,
# lower grayscale cutoff (see histogram.GRAYSCALE_SATURATION).
CANDIDATE_MIN_SATURATION = 0.3
CANDIDATE_MIN_VALUE = 0.1


@dataclass(frozen=True)
class RGB:
    r: int
    g: int
    b: int

    def to_dict(self) -> dict:
        return {"r": self.r, "g": self.g, "b": self.b}


@dataclass(frozen=True)
class HSV:
    """H in [0,360), S in [0,1], V in [0,1]."""

    h: float
    s: float
    v: float


def to_hsv(rgb: RGB) -> HSV:
    """Convert 8-bit RGB to HSV. Hue is 0 for fully desaturated colors."""
    r = rgb.r / 255.0
    g = rgb.g / 255.0
    b = rgb.b / 255.0

    cmax = max(r, g, b)
    cmin = min(r, g, b)
    delta = cmax - cmin

    hue = 0.0
    sat = 0.0 if cmax == 0.0 else delta / cmax

    if delta != 0.0:
        if cmax == r:
            hue = (g - b) / delta + (6.0 if g < b else 0.0)
        elif cmax == g:
            hue = (b - r) / delta + 2.0
        else:
            hue = (r - g) / delta + 4.0
        hue = (hue * 60.0) % 360.0

    return HSV(hue, sat, cmax)


def to_rgb(hsv: HSV) -> RGB:
    """Convert HSV back to 8-bit RGB (rounded)."""
    h_sector = (hsv.h % 360.0) / 60.0
    c = hsv.v * hsv.s
    x = c * (1.0 - abs(h_sector % 2.0 - 1.0))
    m = hsv.v - c

    if h_sector < 1.0:
        r, g, b = c, x, 0.0
    elif h_sector < 2.0:
        r, g, b = x, c, 0.0
    elif h_sector < 3.0:
        r, g, b = 0.0, c, x
    elif h_sector < 4.0:
        r, g, b = 0.0, x, c
    elif h_sector < 5.0:
        r, g, b = x, 0.0, c
    else:
        r, g, b = c, 0.0, x

    return RGB(_to_byte(r + m), _to_byte(g + m), _to_byte(b + m))


def _to_byte(channel: float) -> int:
    # Python's round() is banker's rounding; 8-bit output rounds half up
    return max(0, min(255, int(channel * 255.0 + 0.5)))


def is_chromakey_candidate(hsv: HSV) -> bool:
    """Coarse filter rejecting gray, black and near-white centroids."""
    return hsv.s > CANDIDATE_MIN_SATURATION and hsv.v > CANDIDATE_MIN_VALUE


def hue_distance(h1: float, h2: float) -> float:
    """Shortest angular distance in degrees (wrapping at 360)."""
    diff = abs(h1 - h2)
    return min(diff, 360.0 - diff)


def rgb_to_hsv_arrays(rgb: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Vectorized to_hsv over an (N, 3) uint8 array.

    Returns (hue, sat, val) float64 arrays of length N with the same
    conventions as to_hsv().
    """
    rgb_f = rgb.astype(np.float64) / 255.0
    r, g, b = rgb_f[:, 0], rgb_f[:, 1], rgb_f[:, 2]

    cmax = np.maximum(np.maximum(r, g), b)
    cmin = np.minimum(np.minimum(r, g), b)
    delta = cmax - cmin

    hue = np.zeros_like(delta)
    chroma = delta > 0
    safe_delta = np.where(chroma, delta, 1.0)

    # Channel precedence r > g > b on equal maxima, same as to_hsv()
    mask_r = chroma & (cmax == r)
    mask_g = chroma & (cmax == g) & ~mask_r
    mask_b = chroma & ~mask_r & ~mask_g

    hue[mask_r] = ((g - b) / safe_delta)[mask_r] + np.where(g < b, 6.0, 0.0)[mask_r]
    hue[mask_g] = ((b - r) / safe_delta)[mask_g] + 2.0
    hue[mask_b] = ((r - g) / safe_delta)[mask_b] + 4.0
    hue = (hue * 60.0) % 360.0

    safe_cmax = np.where(cmax > 0, cmax, 1.0)
    sat = np.where(cmax > 0, delta / safe_cmax, 0.0)

    return hue, sat, cmax
