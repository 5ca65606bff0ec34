"""
Cover art pipeline.

Arbitrary artwork -> RGBA pixels -> fixed-size centered square (bilinear,
edge-clamped, opaque black padding) -> PNG -> base64, plus a 2x2 split of
the square into quadrants numbered row-major (top-left, top-right,
bottom-left, bottom-right).

Pixel buffers are numpy uint8 arrays shaped (height, width, 4).
"""
import base64
import io
from typing import List, Optional

import numpy as np
from PIL import Image, ImageOps

from .logging_config import get_logger
from .models import CoverArt

logger = get_logger(__name__)

TARGET_SIZE = 144
PAD_PIXEL = (0, 0, 0, 255)


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded artwork (PNG/JPEG/...) to RGBA pixels, EXIF orientation applied."""
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        return np.asarray(img.convert("RGBA"), dtype=np.uint8).copy()


def _axis_samples(scaled: int, offset: int, target: int, scale: float, source: int):
    """Source indices and weights for one axis of the cropped window."""
    count = max(0, min(target, scaled - offset))
    coords = (np.arange(count, dtype=np.float64) + offset) / scale
    lo = np.minimum(np.floor(coords).astype(np.intp), source - 1)
    hi = np.minimum(lo + 1, source - 1)
    frac = coords - lo
    return lo, hi, frac


def normalize(pixels: np.ndarray, target_size: int = TARGET_SIZE) -> np.ndarray:
    """
    Scale so the shorter side equals target_size, then center-crop to a square.

    Input already at target_size x target_size is returned as an exact copy.
    """
    height, width = pixels.shape[:2]
    if width == 0 or height == 0:
        raise ValueError("empty image")
    if width == target_size and height == target_size:
        return pixels.copy()

    scale = target_size / min(width, height)
    scaled_w = int(round(width * scale))
    scaled_h = int(round(height * scale))
    offset_x = (scaled_w - target_size) // 2 if scaled_w > target_size else 0
    offset_y = (scaled_h - target_size) // 2 if scaled_h > target_size else 0

    x1, x2, fx = _axis_samples(scaled_w, offset_x, target_size, scale, width)
    y1, y2, fy = _axis_samples(scaled_h, offset_y, target_size, scale, height)

    src = pixels.astype(np.float64)
    fx = fx[np.newaxis, :, np.newaxis]
    fy = fy[:, np.newaxis, np.newaxis]
    p11 = src[y1][:, x1]
    p21 = src[y1][:, x2]
    p12 = src[y2][:, x1]
    p22 = src[y2][:, x2]
    blended = (p11 * (1 - fx) * (1 - fy)
               + p21 * fx * (1 - fy)
               + p12 * (1 - fx) * fy
               + p22 * fx * fy)

    out = np.empty((target_size, target_size, 4), dtype=np.uint8)
    out[:] = PAD_PIXEL
    out[:blended.shape[0], :blended.shape[1]] = np.clip(np.round(blended), 0, 255).astype(np.uint8)
    return out


def split(square: np.ndarray) -> List[np.ndarray]:
    """Quadrants of a square in row-major order (index = row * 2 + col)."""
    size = square.shape[0]
    if square.shape[1] != size or size % 2:
        raise ValueError(f"expected an even-sized square, got {square.shape[1]}x{size}")
    half = size // 2
    return [square[row * half:(row + 1) * half, col * half:(col + 1) * half].copy()
            for row in range(2) for col in range(2)]


def encode_png(pixels: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(buffer, format="PNG")
    return buffer.getvalue()


def encode_png_base64(pixels: np.ndarray) -> str:
    return base64.b64encode(encode_png(pixels)).decode("ascii")


def build_cover_art(artwork: Optional[bytes], target_size: int = TARGET_SIZE) -> CoverArt:
    """
    Run the whole pipeline. Never raises.

    No artwork, or artwork that cannot be decoded, gives an empty CoverArt.
    If any quadrant fails to encode, all four parts are left empty and the
    full cover is kept.
    """
    cover = CoverArt()
    if not artwork:
        return cover

    try:
        square = normalize(decode_image(artwork), target_size)
        cover.full = encode_png_base64(square)
    except Exception as e:
        logger.warning(f"Cover art processing failed: {e}")
        return cover

    try:
        cover.parts = [encode_png_base64(part) for part in split(square)]
    except Exception as e:
        logger.warning(f"Cover art split failed, omitting parts: {e}")
        cover.parts = ["", "", "", ""]
    return cover
