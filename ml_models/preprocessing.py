"""
preprocessing.py
================
Turn raw uploaded image bytes into the fixed-shape input tensor expected by
SeverityClassifier.

Pipeline:
  • Decode with Pillow (JPEG, PNG, GIF, BMP, WebP, …). Animated formats use
    the first frame.
  • Rescale 16-bit and float grayscale to 8 bits, then convert to RGB so
    grayscale, palette and alpha images all yield 3 channels.
  • Resize to 224 × 224 with bilinear interpolation (aspect ratio is not kept).
  • Scale channel values linearly from [0, 255] to [0, 1].
  • Output tensor shape: (1, 224, 224, 3), float32, channels-last.

The transform is pure: identical bytes always produce an identical tensor.
"""

from __future__ import annotations

import io
import logging

import numpy as np
import torch
from PIL import Image, UnidentifiedImageError

from ml_models.architecture import INPUT_SIZE
from ml_models.errors import DecodeError

logger = logging.getLogger(__name__)

# Single-channel modes wider than 8 bits (16-bit PNG, 32-bit int/float TIFF).
_WIDE_MODES = frozenset({"I", "I;16", "I;16L", "I;16B", "I;16N", "F"})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def preprocess_image(data: bytes, size: int = INPUT_SIZE) -> torch.Tensor:
    """
    Decode, resize and normalise an encoded image.

    Returns
    -------
    torch.Tensor of shape (1, size, size, 3), dtype float32, values in [0, 1].

    Raises
    ------
    DecodeError if the bytes are not a readable image.
    """
    image = _decode(data)
    try:
        resized = image.resize((size, size), resample=Image.Resampling.BILINEAR)
    finally:
        image.close()

    pixels = np.asarray(resized, dtype=np.float32) / 255.0   # (H, W, 3)
    resized.close()
    return torch.from_numpy(pixels).unsqueeze(0)              # (1, H, W, 3)


def _decode(data: bytes) -> Image.Image:
    """Decode bytes into a fully loaded RGB image."""
    if not data:
        raise DecodeError("Image data is empty.")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.seek(0)
            img.load()
            if img.mode in _WIDE_MODES:
                with _to_8bit(img) as narrowed:
                    return narrowed.convert("RGB")
            return img.convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        logger.info("Rejected undecodable image: %s", exc)
        raise DecodeError("Could not decode image: unsupported or unrecognised format.") from exc
    except (OSError, ValueError, SyntaxError, EOFError) as exc:
        # Truncated or otherwise corrupt payloads surface as one of these.
        logger.info("Rejected corrupt image: %s", exc)
        raise DecodeError("Could not decode image: data is corrupt or truncated.") from exc


def _to_8bit(img: Image.Image) -> Image.Image:
    """
    Rescale a 16/32-bit integer or float grayscale image to mode "L".

    Pillow's own conversion clips these modes to [0, 255]; integer data is
    treated as 16-bit and shifted down, float data as [0, 1].
    """
    pixels = np.asarray(img)
    if img.mode == "F":
        scaled = np.round(np.clip(pixels, 0.0, 1.0) * 255.0)
    else:
        scaled = np.clip(pixels.astype(np.int64), 0, 65535) >> 8
    return Image.fromarray(scaled.astype(np.uint8))   # 2-D uint8 → mode "L"
