import numpy as np
import pytest

from vidmem.config import CODEC_PARAMETERS, QRSettings
from vidmem.encoder.pipeline import serialize_chunk
from vidmem.media import CodecError, QRCodec, prepare_frame


@pytest.mark.parametrize("gzip", [False, True])
def test_encode_decode(gzip):
    codec = QRCodec(QRSettings(gzip=gzip))
    payload = serialize_chunk("The quick brown fox jumps over the lazy dog.", 4)

    image = codec.encode(payload)

    assert image.ndim == 3 and image.shape[2] == 3
    assert codec.decode(image) == payload


def test_colors_applied():
    codec = QRCodec(QRSettings(fill_color="#ff0000", back_color="#00ff00"))
    image = codec.encode("hi")

    # BGR; the border is background
    assert tuple(image[0, 0]) == (0, 255, 0)
    assert (image == np.array([0, 0, 255], dtype=np.uint8)).all(axis=2).any()


def test_decode_blank_image():
    codec = QRCodec(QRSettings())
    blank = np.full((256, 256, 3), 255, dtype=np.uint8)

    with pytest.raises(CodecError) as excinfo:
        codec.decode(blank)

    assert excinfo.value.code == "invalid_code"


def test_prepare_frame_resizes_to_codec_geometry():
    params = CODEC_PARAMETERS["h264"]
    gray = np.zeros((100, 120), dtype=np.uint8)

    frame = prepare_frame(gray, params)

    assert frame.shape == (256, 256, 3)
    assert frame.dtype == np.uint8
