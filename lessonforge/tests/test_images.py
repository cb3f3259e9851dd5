from __future__ import annotations

import base64

import pytest

from lessonforge.curriculum.errors import PayloadTooLargeError, ValidationError
from lessonforge.tests.utils.fakes import png_data_url
from lessonforge.vision.images import decode_data_url


def test_decodes_png_and_jpeg():
    png = decode_data_url(png_data_url("red", size=(7, 3)))
    jpeg = decode_data_url(png_data_url("blue", fmt="JPEG"))

    assert (png.mime, png.width, png.height) == ("image/png", 7, 3)
    assert png.data.startswith(b"\x89PNG")
    assert jpeg.mime == "image/jpeg"


@pytest.mark.parametrize(
    "value",
    [
        "",
        "https://example.com/page.png",
        "data:application/pdf;base64,JVBERi0=",
        "data:image/png;base64," + base64.b64encode(b"definitely not a png").decode(),
    ],
)
def test_rejects_unusable_payloads(value):
    with pytest.raises(ValidationError):
        decode_data_url(value)


def test_rejects_images_over_the_byte_limit():
    data_url = png_data_url("red", size=(32, 32))
    size = len(decode_data_url(data_url).data)

    with pytest.raises(PayloadTooLargeError) as info:
        decode_data_url(data_url, max_bytes=size - 1)

    assert (info.value.limit, info.value.observed) == (size - 1, size)
    assert decode_data_url(data_url, max_bytes=size).width == 32
