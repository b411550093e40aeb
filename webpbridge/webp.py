"""
webp.py - Public entry points for decoding, encoding and inspecting WebP

Every encode mode has a simple form, which goes through libwebp's one-shot
API, and an advanced form, which builds a WebPConfig and drives the picture
lifecycle with a streaming output sink. The two are separate code paths and
are not expected to produce identical bytes for equal parameters.

Usage:
    from webpbridge import webp
    from webpbridge.wpimage import WpBitmap

    bmp = WpBitmap.new("BGR", (64, 48), (40, 80, 120))
    data = webp.encode_lossy(bmp, 75)
    result = webp.encode_lossless_advanced(bmp, speed=6, info=True)
    print(webp.get_info(result.data))
"""

from contextlib import ExitStack
import logging
import time
from typing import NamedTuple, Optional

from webpbridge import wbstats
from webpbridge.wbconfig import CFG
from webpbridge.utils.constants import QUALITY_MAX, QUALITY_MIN
from webpbridge.wpimage.WpBitmap import LockMode, PixelFormat, WpBitmap
from webpbridge.wpnative import WpConfig, WpDispatch, WpDistortion, WpFeatures
from webpbridge.wpnative.WpDistortion import DistortionResult
from webpbridge.wpnative.WpErrors import (
    VP8StatusCode, WebPException, WpDecodeError, WpInvalidConfigError, status_error,
)
from webpbridge.wpnative.WpFeatures import BitstreamFeatures
from webpbridge.wpnative.WpPicture import EncodeStatistics, NativePicture
from webpbridge.wpnative.WpStructs import DistortionMetric, WebPConfig, WebPPreset
from webpbridge.wpnative.WpWriter import OutputAccumulator

log = logging.getLogger(__name__)


class EncodeResult(NamedTuple):
    data: bytes
    stats: Optional[EncodeStatistics] = None


def _default_quality():
    return int(CFG.encoder.default_quality)


def _default_speed():
    return int(CFG.encoder.default_speed)


def _check_quality(quality):
    if not WpConfig.quality_in_range(quality):
        raise WpInvalidConfigError(f"Quality {quality} outside [{QUALITY_MIN}, {QUALITY_MAX}]")


def _initial_buffer_size(bitmap) -> int:
    ratio = float(CFG.encoder.initial_buffer_ratio)
    return max(4096, int(bitmap.width * bitmap.height * ratio))


# ============================================================================
# Decode / inspect
# ============================================================================

def decode(data) -> WpBitmap:
    """Decode a still WebP image into a BGR bitmap, or BGRA when it has alpha."""
    data = bytes(data)
    native = WpDispatch.get_native()
    features = WpFeatures.probe(data, native)
    if features.has_animation:
        raise status_error(VP8StatusCode.VP8_STATUS_UNSUPPORTED_FEATURE, "animated WebP can't be decoded to a bitmap")

    pixel_format = PixelFormat.BGRA if features.has_alpha else PixelFormat.BGR
    bmp = WpBitmap(features.width, features.height, pixel_format)
    with bmp.lock_bits(mode=LockMode.WRITE_ONLY) as guard:
        log.debug(f"WebPDecode{pixel_format.value}Into: {features.width}x{features.height}")
        if not native.decode_into(pixel_format, data, guard.address, guard.size_bytes, guard.stride):
            raise WpDecodeError(f"Can't decode WebP ({len(data)} bytes, {features.format})")
    wbstats.inc_stat('decode_count')
    return bmp


def get_info(data) -> BitstreamFeatures:
    return WpFeatures.probe(data)


def get_dimensions(data):
    """Width and height from the bitstream header, via WebPGetInfo()."""
    data = bytes(data)
    ok, width, height = WpDispatch.get_native().get_info(data)
    if not ok:
        raise WpDecodeError(f"Can't get information of WebP ({len(data)} bytes)")
    return width, height


def get_version() -> str:
    return WpDispatch.format_version(WpDispatch.get_native().decoder_version())


def get_encoder_version() -> str:
    return WpDispatch.format_version(WpDispatch.get_native().encoder_version())


def get_picture_distortion(source, reference, metric=DistortionMetric.PSNR) -> DistortionResult:
    """PSNR, SSIM or LSIM of ``source`` against ``reference``, in channel0/1/2, alpha, aggregate order."""
    return WpDistortion.measure(source, reference, metric)


# ============================================================================
# Simple encoding API
# ============================================================================

def _encode_simple(bitmap, mode, quality=None) -> bytes:
    native = WpDispatch.get_native()
    start = time.monotonic()
    with bitmap.lock_bits(mode=LockMode.READ_ONLY) as guard:
        if quality is None:
            data = native.encode_simple_lossless(
                guard.pixel_format, guard.address, guard.width, guard.height, guard.stride)
        else:
            data = native.encode_simple(
                guard.pixel_format, guard.address, guard.width, guard.height, guard.stride, quality)
    if not data:
        raise WebPException(f"Simple {mode} encoder produced no data for {bitmap!r}")
    _record_encode(mode, start, len(data))
    return data


def encode_lossy(bitmap, quality=None) -> bytes:
    """Lossy encoding with libwebp defaults for everything but quality."""
    quality = _default_quality() if quality is None else quality
    _check_quality(quality)
    return _encode_simple(bitmap, "lossy", quality)


def encode_lossless(bitmap) -> bytes:
    return _encode_simple(bitmap, "lossless")


# ============================================================================
# Advanced encoding API
# ============================================================================

def _record_encode(mode, start, size):
    elapsed_ms = (time.monotonic() - start) * 1000
    wbstats.ENCODE_TIMES.set(mode, elapsed_ms)
    wbstats.inc_many({'encode_count': 1, f'encode_{mode.replace("-", "_")}': 1, 'encoded_bytes': size})
    log.debug(f"Encoded {mode}: {size} bytes in {elapsed_ms:.1f} ms")


def _encode_advanced(bitmap, config: WebPConfig, mode, info=False, progress=None, native=None) -> EncodeResult:
    native = native or WpDispatch.get_native()
    WpConfig.validate_or_raise(config, native)
    config = WpConfig.snapshot(config)

    sink = OutputAccumulator(_initial_buffer_size(bitmap))
    start = time.monotonic()
    with ExitStack() as stack:
        guard = stack.enter_context(bitmap.lock_bits(mode=LockMode.READ_ONLY))
        pic = stack.enter_context(NativePicture(native))
        pic.init(bitmap.width, bitmap.height, use_argb=True)
        pic.import_pixels(guard)
        if info:
            pic.attach_stats()
        stats = pic.encode(config, sink, progress)

    data = sink.getvalue()
    _record_encode(mode, start, len(data))
    if stats is not None and CFG.diagnostics.log_stats:
        log.info(f"{mode} encode statistics:\n{stats.summary(lossless=bool(config.lossless))}")
    return EncodeResult(data, stats)


def encode_lossy_advanced(bitmap, quality=None, speed=None, info=False, progress=None) -> EncodeResult:
    """
    Lossy encoding with tuning.

    ``speed`` runs from 0 (fast) to 6 (slower, better); larger values are
    clamped. With ``info`` the result carries the encoder statistics.
    """
    quality = _default_quality() if quality is None else quality
    speed = _default_speed() if speed is None else speed
    native = WpDispatch.get_native()
    config = WpConfig.build(WebPPreset.DEFAULT, quality, native)
    WpConfig.apply_lossy_tuning(config, speed)
    WpConfig.apply_thread_level(config, int(CFG.encoder.thread_level))
    return _encode_advanced(bitmap, config, "lossy", info, progress, native)


def encode_lossless_advanced(bitmap, speed=None, info=False, progress=None) -> EncodeResult:
    speed = _default_speed() if speed is None else speed
    native = WpDispatch.get_native()
    config = WebPConfig()
    WpConfig.apply_lossless_tuning(config, speed, native)
    return _encode_advanced(bitmap, config, "lossless", info, progress, native)


def encode_near_lossless(bitmap, quality, speed=9, info=False, progress=None) -> EncodeResult:
    """
    Near-lossless encoding: lossless container, pixels pre-quantized by up
    to an amount controlled by ``quality`` (100 = off, 0 = strongest).
    """
    native = WpDispatch.get_native()
    config = WebPConfig()
    WpConfig.apply_near_lossless(config, quality, speed, native)
    return _encode_advanced(bitmap, config, "near-lossless", info, progress, native)


def encode_with_config(bitmap, config: WebPConfig, info=False, progress=None) -> EncodeResult:
    """Encode with a caller-built config. The config is validated first and copied for the call."""
    mode = "lossless" if config.lossless else "lossy"
    return _encode_advanced(bitmap, config, mode, info, progress)
