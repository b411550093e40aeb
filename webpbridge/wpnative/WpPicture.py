"""
WpPicture.py - Native WebPPicture lifecycle

    UNINITIALIZED -> INITIALIZED -> IMPORTED -> ENCODED | FAILED -> FREED

Plane and scratch memory behind a picture belongs to libwebp and is only
ever released with WebPPictureFree(). NativePicture is a context manager so
that release happens on every exit path once init succeeded.

Usage:
    with NativePicture() as pic, bitmap.lock_bits() as guard:
        pic.init(guard.width, guard.height)
        pic.import_pixels(guard)
        stats = pic.encode(config, sink)
"""

from ctypes import POINTER, pointer
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Optional, Tuple

from webpbridge import wbstats
from webpbridge.wpnative import WpDispatch, WpWriter
from webpbridge.wpnative.WpErrors import (
    WebPEncodingError, WpAbiError, WpEncodeError, WpOutOfMemoryError, WpPreconditionError,
)
from webpbridge.wpnative.WpStructs import (
    LosslessFeatures, WebPAuxStats, WebPPicture, WebPProgressHook, WebPWriterFunction,
)

log = logging.getLogger(__name__)


class PictureState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    IMPORTED = "imported"
    ENCODED = "encoded"
    FAILED = "failed"
    FREED = "freed"


@dataclass(frozen=True)
class EncodeStatistics:
    """Copy of the WebPAuxStats block filled in by one encode."""
    width: int
    height: int
    coded_size: int
    psnr: Tuple[float, float, float, float, float]      # Y, U, V, All, Alpha
    block_count_intra4: int
    block_count_intra16: int
    block_count_skipped: int
    header_bytes: int
    mode_partition_0: int
    residual_bytes: Tuple[Tuple[int, ...], ...]         # DC / AC / uv, per segment
    segment_size: Tuple[int, ...]
    segment_quant: Tuple[int, ...]
    segment_level: Tuple[int, ...]
    alpha_data_size: int
    layer_data_size: int
    lossless_features: LosslessFeatures
    histogram_bits: int
    transform_bits: int
    cache_bits: int
    palette_size: int
    lossless_size: int
    lossless_hdr_size: int
    lossless_data_size: int

    @classmethod
    def from_native(cls, stats: WebPAuxStats, width: int, height: int) -> "EncodeStatistics":
        return cls(
            width=width,
            height=height,
            coded_size=stats.coded_size,
            psnr=tuple(round(v, 3) for v in stats.PSNR),
            block_count_intra4=stats.block_count[0],
            block_count_intra16=stats.block_count[1],
            block_count_skipped=stats.block_count[2],
            header_bytes=stats.header_bytes[0],
            mode_partition_0=stats.header_bytes[1],
            residual_bytes=tuple(tuple(row) for row in stats.residual_bytes),
            segment_size=tuple(stats.segment_size),
            segment_quant=tuple(stats.segment_quant),
            segment_level=tuple(stats.segment_level),
            alpha_data_size=stats.alpha_data_size,
            layer_data_size=stats.layer_data_size,
            lossless_features=LosslessFeatures(stats.lossless_features & 0xf),
            histogram_bits=stats.histogram_bits,
            transform_bits=stats.transform_bits,
            cache_bits=stats.cache_bits,
            palette_size=stats.palette_size,
            lossless_size=stats.lossless_size,
            lossless_hdr_size=stats.lossless_hdr_size,
            lossless_data_size=stats.lossless_data_size,
        )

    def feature_names(self):
        return [f.name.replace('_', '-') for f in LosslessFeatures
                if f and f in self.lossless_features]

    def summary(self, lossless=False) -> str:
        lines = [
            f"Dimension: {self.width} x {self.height} pixels",
            f"Output:    {self.coded_size} bytes",
        ]
        if lossless:
            features = " ".join(self.feature_names()) or "none"
            lines += [
                f"Lossless compressed size: {self.lossless_size} bytes",
                f"  * Header size: {self.lossless_hdr_size} bytes",
                f"  * Image data size: {self.lossless_data_size} bytes",
                f"  * Lossless features used: {features}",
                f"  * Precision Bits: histogram={self.histogram_bits} "
                f"transform={self.transform_bits} cache={self.cache_bits}",
            ]
            if self.palette_size:
                lines.append(f"  * Palette size: {self.palette_size}")
            return "\n".join(lines)

        y, u, v, all_, alpha = self.psnr
        lines += [
            f"PSNR Y:    {y} db",
            f"PSNR u:    {u} db",
            f"PSNR v:    {v} db",
            f"PSNR ALL:  {all_} db",
        ]
        if self.alpha_data_size:
            lines.append(f"PSNR Alpha: {alpha} db ({self.alpha_data_size} bytes)")
        lines += [
            f"Block intra4:  {self.block_count_intra4}",
            f"Block intra16: {self.block_count_intra16}",
            f"Block skipped: {self.block_count_skipped}",
            f"Header size:    {self.header_bytes} bytes",
            f"Mode-partition: {self.mode_partition_0} bytes",
        ]
        for i, size in enumerate(self.segment_size):
            lines.append(f"Macroblocks {i}:  {size}")
        for i, q in enumerate(self.segment_quant):
            lines.append(f"Quantizer   {i}:  {q}")
        for i, level in enumerate(self.segment_level):
            lines.append(f"Filter level {i}: {level}")
        return "\n".join(lines)


class NativePicture(object):
    """
    One WebPPicture and the Python objects native code points into while
    it is alive (statistics block, progress hook).
    """

    def __init__(self, native=None):
        self.native = native or WpDispatch.get_native()
        self.picture = WebPPicture()
        self.state = PictureState.UNINITIALIZED
        self._stats = None
        self._progress_hook = None
        self._owns_native = False

    def __repr__(self):
        return f"NativePicture({self.picture.width}x{self.picture.height} {self.state.value})"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.free()
        return False

    @property
    def error_code(self) -> int:
        return self.picture.error_code

    def _expect(self, *states):
        if self.state not in states:
            raise WpPreconditionError(
                f"Picture is {self.state.value}, expected {' or '.join(s.value for s in states)}"
            )

    def init(self, width: int, height: int, use_argb=True):
        self._expect(PictureState.UNINITIALIZED)
        log.debug(f"WebPPictureInit: {width}x{height}")
        if not self.native.picture_init(self.picture):
            self.state = PictureState.FAILED
            raise WpAbiError("WebPPictureInit refused the encoder ABI version")
        self._owns_native = True
        wbstats.inc_stat('picture_init')
        self.picture.width = width
        self.picture.height = height
        self.picture.use_argb = 1 if use_argb else 0
        self.state = PictureState.INITIALIZED
        return self

    def import_pixels(self, guard):
        """Copy the guarded pixels into libwebp-owned planes."""
        self._expect(PictureState.INITIALIZED)
        if (guard.width, guard.height) != (self.picture.width, self.picture.height):
            raise WpPreconditionError(
                f"Guard is {guard.width}x{guard.height}, picture is "
                f"{self.picture.width}x{self.picture.height}"
            )
        log.debug(f"WebPPictureImport{guard.pixel_format.value}: stride={guard.stride}")
        if not self.native.picture_import(self.picture, guard.pixel_format, guard.address, guard.stride):
            self.state = PictureState.FAILED
            raise WpOutOfMemoryError(
                f"Can't allocate memory in WebPPictureImport{guard.pixel_format.value}"
            )
        self.state = PictureState.IMPORTED
        return self

    def attach_stats(self):
        self._stats = WebPAuxStats()
        self.picture.stats = pointer(self._stats)
        return self

    def encode(self, config, sink, progress=None) -> Optional[EncodeStatistics]:
        """
        Run WebPEncode() with ``config``, streaming output into ``sink``.

        ``progress`` is called with a percentage and may return False to
        abort. Returns the statistics snapshot when attach_stats() was
        called, otherwise None. Raises WpEncodeError carrying the picture's
        error code on failure.
        """
        self._expect(PictureState.IMPORTED)

        if progress is not None:
            def _hook(percent, _picture):
                try:
                    return 0 if progress(percent) is False else 1
                except Exception:
                    log.exception("Progress callback failed, aborting encode")
                    return 0
            self._progress_hook = WebPProgressHook(_hook)
            self.picture.progress_hook = self._progress_hook

        with WpWriter.registered(sink) as token:
            self.picture.writer = WpWriter.memory_writer
            self.picture.custom_ptr = token
            try:
                log.debug(f"WebPEncode: {self!r} {config!r}")
                ok = self.native.encode(config, self.picture)
            finally:
                self.picture.writer = WebPWriterFunction()
                self.picture.custom_ptr = None
                self.picture.progress_hook = WebPProgressHook()

        if not ok:
            self.state = PictureState.FAILED
            code = self.picture.error_code
            if code == WebPEncodingError.VP8_ENC_OK:
                # Writer refused a chunk without the encoder setting a code
                code = WebPEncodingError.VP8_ENC_ERROR_BAD_WRITE
            raise WpEncodeError(code, f"{self.picture.width}x{self.picture.height}")

        self.state = PictureState.ENCODED
        if self._stats is None:
            return None
        return EncodeStatistics.from_native(self._stats, self.picture.width, self.picture.height)

    def free(self):
        """Release libwebp-owned memory. Safe to call at any point, any number of times."""
        if self.state == PictureState.FREED:
            return
        try:
            if self._owns_native:
                log.debug(f"WebPPictureFree: {self!r}")
                self.native.picture_free(self.picture)
                wbstats.inc_stat('picture_free')
        finally:
            self._owns_native = False
            self.picture.stats = POINTER(WebPAuxStats)()
            self._stats = None
            self._progress_hook = None
            self.state = PictureState.FREED
