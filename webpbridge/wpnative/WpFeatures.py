"""
WpFeatures.py - Header-only bitstream probe

Reads width, height, alpha, animation and codec variant from the container
header without decoding any pixels. Each failing VP8StatusCode raises its
own WpStatusError subclass.
"""

from dataclasses import dataclass
import logging

from webpbridge.wpnative import WpDispatch
from webpbridge.wpnative.WpErrors import VP8StatusCode, status_error
from webpbridge.wpnative.WpStructs import BitstreamFormat, WebPBitstreamFeatures

log = logging.getLogger(__name__)

RIFF_HEADER_SIZE = 12


@dataclass(frozen=True)
class BitstreamFeatures:
    width: int
    height: int
    has_alpha: bool
    has_animation: bool
    variant: BitstreamFormat

    @property
    def format(self) -> str:
        return self.variant.label

    @property
    def size(self):
        return self.width, self.height


def is_riff_prefix(data: bytes) -> bool:
    """True if ``data`` could be the start of a RIFF/WEBP container."""
    head = data[:RIFF_HEADER_SIZE]
    if head[:4] != b'RIFF'[:len(head)]:
        return False
    if len(head) > 8 and head[8:] != b'WEBP'[:len(head) - 8]:
        return False
    return True


def probe(data, native=None) -> BitstreamFeatures:
    data = bytes(data)
    native = native or WpDispatch.get_native()
    features = WebPBitstreamFeatures()
    log.debug(f"WebPGetFeatures: {len(data)} bytes")
    status = native.get_features(data, features)

    if status == VP8StatusCode.VP8_STATUS_NOT_ENOUGH_DATA \
            and len(data) < RIFF_HEADER_SIZE and not is_riff_prefix(data):
        # libwebp asks for more bytes before looking at them; a short
        # buffer that cannot grow into a container is a bad bitstream.
        status = VP8StatusCode.VP8_STATUS_BITSTREAM_ERROR

    if status != VP8StatusCode.VP8_STATUS_OK:
        raise status_error(status, f"probing {len(data)} bytes")

    try:
        variant = BitstreamFormat(features.format)
    except ValueError:
        variant = BitstreamFormat.UNDEFINED

    return BitstreamFeatures(
        width=features.width,
        height=features.height,
        has_alpha=bool(features.has_alpha),
        has_animation=bool(features.has_animation),
        variant=variant,
    )
