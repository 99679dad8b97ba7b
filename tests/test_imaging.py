import base64
import io

import numpy as np
import pytest
from PIL import Image

from wsi_algos.client.imaging import decode_image_base64, encode_region_image, encode_region_image_base64
from wsi_algos.errors import DecodeError


def test_encode_pil_image_as_tiff():
    data = encode_region_image(Image.new("RGB", (5, 3)))
    decoded = Image.open(io.BytesIO(data))
    assert decoded.format == "TIFF"
    assert decoded.size == (5, 3)


def test_encode_rgba_array_drops_alpha():
    arr = np.zeros((2, 2, 4), dtype=np.uint8)
    decoded = Image.open(io.BytesIO(encode_region_image(arr)))
    assert decoded.mode == "RGB"


def test_encode_rejects_unknown_type():
    with pytest.raises(TypeError):
        encode_region_image("pixels")


def test_base64_round_trip():
    text = encode_region_image_base64(Image.new("L", (3, 3), 7))
    image = decode_image_base64(text)
    assert image.getpixel((1, 1)) == 7


def test_decode_invalid_image():
    with pytest.raises(DecodeError):
        decode_image_base64(base64.b64encode(b"not an image").decode("ascii"))
