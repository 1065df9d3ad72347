"""
QR Symbol Codec

Renders a short text payload as a QR code image and reads it back.

Data Flow
---------
Encoding:  text -> (optional) zlib + base64 -> QR modules -> scaled BGR image
Decoding:  BGR image -> QR detection -> text -> (optional) base64 + zlib -> text
"""

from __future__ import annotations

import base64
import binascii
import zlib
from typing import Tuple

import cv2
import numpy as np

from .errors import CodecError
from ..config import QRSettings

# Values of cv::QRCodeEncoder::CorrectionLevel
_CORRECTION_LEVELS = {
    "low": 0,
    "medium": 1,
    "quartile": 2,
    "high": 3,
}


def _hex_to_bgr(color: str) -> Tuple[int, int, int]:
    value = color.lstrip("#")
    r, g, b = (int(value[i : i + 2], 16) for i in (0, 2, 4))
    return b, g, r


class QRCodec:
    """
    OpenCV-backed QR encoder/decoder.

    Instances hold only settings and are safe to share across threads;
    OpenCV encoder/detector objects are created per call.
    """

    def __init__(self, qr: QRSettings, module_size: int = 8, border: int = 4) -> None:
        self.settings = qr
        self.module_size = module_size
        self.border = border
        self._fill = _hex_to_bgr(qr.fill_color)
        self._back = _hex_to_bgr(qr.back_color)

    def encode(self, payload: str) -> np.ndarray:
        """
        Render ``payload`` as a BGR QR code image.
        """
        data = payload
        if self.settings.gzip:
            data = base64.b64encode(zlib.compress(payload.encode("utf-8"))).decode("ascii")

        params = cv2.QRCodeEncoder_Params()
        params.correction_level = _CORRECTION_LEVELS[self.settings.error_correction]

        try:
            modules = cv2.QRCodeEncoder.create(params).encode(data)
        except cv2.error as exc:
            raise CodecError(f"QR encoding failed for {len(data)} bytes: {exc}") from exc

        if modules is None or modules.size == 0:
            raise CodecError(f"QR encoding produced no image for {len(data)} bytes")

        modules = cv2.copyMakeBorder(
            modules,
            self.border,
            self.border,
            self.border,
            self.border,
            cv2.BORDER_CONSTANT,
            value=255,
        )
        scaled = cv2.resize(
            modules,
            None,
            fx=self.module_size,
            fy=self.module_size,
            interpolation=cv2.INTER_NEAREST,
        )

        dark = scaled < 128
        image = np.empty((*scaled.shape, 3), dtype=np.uint8)
        image[dark] = self._fill
        image[~dark] = self._back
        return image

    def decode(self, image: np.ndarray) -> str:
        """
        Read the QR code in ``image`` and return its text payload.

        Raises
        ------
        CodecError
            With code ``invalid_code`` if no readable code is found.
        """
        gray = image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        try:
            text, _points, _straight = cv2.QRCodeDetector().detectAndDecode(gray)
        except cv2.error as exc:
            raise CodecError("QR detection failed", code="invalid_code") from exc

        if not text:
            raise CodecError("No QR code found in image", code="invalid_code")

        if not self.settings.gzip:
            return text

        try:
            return zlib.decompress(base64.b64decode(text, validate=True)).decode("utf-8")
        except (binascii.Error, zlib.error, UnicodeDecodeError) as exc:
            raise CodecError("QR payload is not valid compressed data", code="invalid_code") from exc
