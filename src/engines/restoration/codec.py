"""
Tensor Codec

Moves pixels between the interleaved 8-bit layout images are stored in
(H, W, C) and the planar float32 layout models consume (1, C, H, W), plus
the Pillow decode/encode at the edges of the pipeline.

All arithmetic is float32. Decoding scales by 255, clamps to [0, 255] and
floors; nothing wraps through integer overflow.
"""

import io

import numpy as np
from PIL import Image, UnidentifiedImageError

from src.core.exceptions import InvalidImageError

# Gray modes wider than 8 bits; Pillow's convert("L") clips these instead of scaling
WIDE_GRAYSCALE_MODES = {"I", "I;16", "I;16B", "I;16L", "I;16N", "F"}

# Pillow modes decoded as a single gray channel
GRAYSCALE_MODES = {"1", "L", "LA"} | WIDE_GRAYSCALE_MODES

_SCALE = np.float32(255.0)


def _as_hwc(pixels: np.ndarray) -> np.ndarray:
    if pixels.ndim == 2:
        return pixels[:, :, np.newaxis]
    if pixels.ndim != 3:
        raise ValueError(f"expected an (H, W) or (H, W, C) pixel array, got shape {pixels.shape}")
    return pixels


def _wide_gray_to_uint8(image: Image.Image) -> np.ndarray:
    """Scale 16-bit integer or float gray pixels down to 8 bits."""
    data = np.asarray(image)
    if image.mode == "F":
        values = np.nan_to_num(data.astype(np.float32), nan=0.0, posinf=255.0, neginf=0.0)
        if values.size and values.max() <= 1.0:
            values = values * _SCALE
        return np.floor(np.clip(values, 0.0, 255.0)).astype(np.uint8)

    values = np.clip(data.astype(np.int64), 0, 65535)
    return (values >> 8).astype(np.uint8)


# =============================================================================
# Image decode / encode
# =============================================================================

def decode_image(image_bytes: bytes) -> np.ndarray:
    """
    Decode raster bytes into an (H, W, C) uint8 array with alpha removed.

    Gray images keep one channel; everything else becomes RGB.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image.load()
            if image.mode in WIDE_GRAYSCALE_MODES:
                return _as_hwc(_wide_gray_to_uint8(image))
            target_mode = "L" if image.mode in GRAYSCALE_MODES else "RGB"
            if image.mode == "P" and "transparency" in image.info:
                image = image.convert("RGBA")
            converted = image.convert(target_mode)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise InvalidImageError(f"could not decode image: {e}") from e

    return _as_hwc(np.asarray(converted, dtype=np.uint8))


def encode_png(pixels: np.ndarray) -> bytes:
    """Encode an (H, W, C) uint8 array as PNG bytes."""
    pixels = _as_hwc(pixels)
    channels = pixels.shape[2]
    if channels == 1:
        image = Image.fromarray(np.ascontiguousarray(pixels[:, :, 0]))
    elif channels in (3, 4):
        image = Image.fromarray(np.ascontiguousarray(pixels))
    else:
        raise ValueError(f"cannot encode {channels}-channel pixels as PNG")

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


# =============================================================================
# Pixels <-> tensor
# =============================================================================

def pixels_to_tensor(pixels: np.ndarray, is_grayscale: bool) -> np.ndarray:
    """
    Encode interleaved uint8 pixels as a (1, C, H, W) float32 tensor in [0, 1].

    Grayscale models get the mean of the color channels. Color models get
    exactly three planes: sources with fewer channels repeat their last
    plane, extra channels (alpha) are dropped.
    """
    pixels = _as_hwc(pixels)
    data = pixels.astype(np.float32)
    channels = data.shape[2]

    if is_grayscale:
        if channels == 1:
            plane = data[:, :, 0]
        else:
            plane = data[:, :, :3].mean(axis=2, dtype=np.float32)
        planar = plane[np.newaxis, :, :]
    else:
        planes = [data[:, :, c] for c in range(min(channels, 3))]
        while len(planes) < 3:
            planes.append(planes[-1])
        planar = np.stack(planes, axis=0)

    return (planar / _SCALE)[np.newaxis, ...].astype(np.float32, copy=False)


def tensor_to_pixels(tensor: np.ndarray) -> np.ndarray:
    """
    Decode a (1, C, H, W) model output into (H, W, C) uint8 pixels.

    Values are scaled by 255, clamped to [0, 255] and floored. NaN decodes to 0.
    """
    data = np.asarray(tensor, dtype=np.float32)
    if data.ndim == 4:
        if data.shape[0] != 1:
            raise ValueError(f"expected a batch of one, got shape {data.shape}")
        data = data[0]
    elif data.ndim == 2:
        data = data[np.newaxis, :, :]
    elif data.ndim != 3:
        raise ValueError(f"cannot decode output tensor of shape {data.shape}")

    values = np.nan_to_num(data * _SCALE, nan=0.0, posinf=255.0, neginf=0.0)
    values = np.floor(np.minimum(np.maximum(values, 0.0), 255.0))
    return np.ascontiguousarray(values.astype(np.uint8).transpose(1, 2, 0))
