from __future__ import annotations

from ..core.errors import VidmemError


class CodecError(VidmemError):
    """
    Raised when the symbol (QR) codec or the frame (video) codec fails.

    ``code`` is ``invalid_code`` when an image holds no readable symbol.
    """

    code = "codec_error"
