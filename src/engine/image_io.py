"""Still-image loading into RGBA buffers via Pillow."""

import io

import numpy as np
from PIL import Image


def load_image_rgba(path: str) -> np.ndarray:
    """Decode an image file to an (H, W, 4) uint8 RGBA array."""
    with Image.open(path) as img:
        return np.array(img.convert("RGBA"))


def decode_image_rgba(data: bytes) -> np.ndarray:
    """Decode encoded image bytes (PNG, JPEG, ...) to (H, W, 4) uint8 RGBA."""
    with Image.open(io.BytesIO(data)) as img:
        return np.array(img.convert("RGBA"))


def image_to_buffer(frame: np.ndarray) -> tuple[bytes, int, int]:
    """Flatten an (H, W, 4) frame to (rgba_bytes, width, height)."""
    height, width = frame.shape[:2]
    return np.ascontiguousarray(frame, dtype=np.uint8).tobytes(), width, height
