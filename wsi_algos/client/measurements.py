"""Per-object measurement arrays sent by the server as base64-encoded TIFF images."""

from __future__ import annotations
import base64
import binascii
import io
from typing import List, Sequence

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import DecodeError


def decode_base64_tiff_array(text: str) -> List[float]:
    """Decode a base64 TIFF into a flat list of floats in raster order."""
    if not isinstance(text, str):
        raise DecodeError(f"Expected a base64 string, got {type(text).__name__}")
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 measurement array: {e}") from e

    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.load()
            values = np.asarray(img, dtype=np.float64)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeError(f"Could not decode TIFF image from input: {e}") from e
    return values.ravel().tolist()


def encode_tiff_array(values: Sequence[float]) -> str:
    """1-D 값 배열 → float32 단일 행 TIFF → base64"""
    arr = np.asarray(values, dtype=np.float32).reshape(1, -1)
    buffer = io.BytesIO()
    Image.fromarray(arr).save(buffer, format="TIFF")
    return base64.b64encode(buffer.getvalue()).decode("utf-8")
