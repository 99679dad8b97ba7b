from __future__ import annotations
import base64
import binascii
import io
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import DecodeError

RegionImage = Union[Image.Image, np.ndarray]


def encode_region_image(image: RegionImage, fmt: str = "TIFF") -> bytes:
    """영역 이미지를 서버 전송용 바이트로 인코딩 (기본: 무손실 TIFF)"""
    if isinstance(image, np.ndarray):
        image = Image.fromarray(image)
    if not isinstance(image, Image.Image):
        raise TypeError(f"Unsupported image type: {type(image).__name__}")
    if image.mode == "RGBA":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def encode_region_image_base64(image: RegionImage, fmt: str = "TIFF") -> str:
    return base64.b64encode(encode_region_image(image, fmt)).decode("utf-8")


def decode_image_base64(text: str) -> Image.Image:
    """서버가 보낸 base64 이미지 (샘플 이미지) 디코딩"""
    try:
        raw = base64.b64decode(text, validate=True)
        image = Image.open(io.BytesIO(raw))
        image.load()
        return image
    except (binascii.Error, ValueError, TypeError, UnidentifiedImageError, OSError) as e:
        raise DecodeError(f"Invalid base64 image: {e}") from e
