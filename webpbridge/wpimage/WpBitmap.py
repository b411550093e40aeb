#!/usr/bin/env python

from ctypes import addressof, c_uint8
from enum import Enum, IntEnum

from PIL import Image

from webpbridge import wbstats
from webpbridge.wpnative.WpErrors import WpBitmapException, WpPreconditionError

import logging
log = logging.getLogger(__name__)


class PixelFormat(Enum):
    """Interleaved sample orders a bitmap can hold. Values are Pillow raw modes."""
    BGR = "BGR"
    BGRA = "BGRA"
    RGB = "RGB"
    RGBA = "RGBA"

    @property
    def bytes_per_pixel(self):
        return 4 if self.has_alpha else 3

    @property
    def has_alpha(self):
        return self.value.endswith("A")

    @property
    def pil_mode(self):
        return "RGBA" if self.has_alpha else "RGB"


class LockMode(IntEnum):
    READ_ONLY = 1
    WRITE_ONLY = 2


class WpBitmap(object):
    """
    Contiguous rows of interleaved color samples with a known stride.

    The pixel buffer is a bytearray, so it can be handed to native code by
    address through a BufferGuard without copying.
    """

    def __init__(self, width, height, pixel_format=PixelFormat.BGR, stride=None, data=None):
        pixel_format = PixelFormat(pixel_format)
        if width <= 0 or height <= 0:
            raise WpPreconditionError(f"Invalid bitmap size {width}x{height}")

        min_stride = width * pixel_format.bytes_per_pixel
        if stride is None:
            # Rows padded to 4 bytes, like a GDI bitmap
            stride = (min_stride + 3) & ~3
        if stride < min_stride:
            raise WpPreconditionError(f"Stride {stride} too small for {width} {pixel_format.value} pixels")

        if data is None:
            data = bytearray(stride * height)
        elif not isinstance(data, bytearray):
            data = bytearray(data)
        if len(data) < stride * height:
            raise WpPreconditionError(f"Buffer of {len(data)} bytes too small for {height} rows of {stride}")

        self._width = width
        self._height = height
        self._format = pixel_format
        self._stride = stride
        self._data = data
        self._locked = False
        self.lock_count = 0
        self.unlock_count = 0

    def __repr__(self):
        return f"WpBitmap(width: {self._width} height: {self._height} stride: {self._stride} format: {self._format.value})"

    @property
    def width(self):
        return self._width

    @property
    def height(self):
        return self._height

    @property
    def size(self):
        return self._width, self._height

    @property
    def stride(self):
        return self._stride

    @property
    def pixel_format(self):
        return self._format

    @property
    def locked(self):
        return self._locked

    def tobytes(self):
        """Pixel rows without stride padding."""
        return bytes(self._region_bytes((0, 0, self._width, self._height)))

    def getpixel(self, xy):
        x, y = xy
        bpp = self._format.bytes_per_pixel
        off = y * self._stride + x * bpp
        return tuple(self._data[off:off + bpp])

    def to_pil(self):
        return Image.frombuffer(
            self._format.pil_mode, self.size, bytes(self._data),
            "raw", self._format.value, self._stride, 1
        )

    def lock_bits(self, rect=None, mode=LockMode.READ_ONLY, pixel_format=None):
        """Pin the buffer (or a rectangle of it) for native access. See BufferGuard."""
        return BufferGuard(self, rect, mode, pixel_format)

    def _region_bytes(self, rect):
        x, y, w, h = rect
        bpp = self._format.bytes_per_pixel
        row_len = w * bpp
        if x == 0 and row_len == self._stride:
            return self._data[y * self._stride:(y + h) * self._stride]
        out = bytearray(row_len * h)
        for r in range(h):
            src = (y + r) * self._stride + x * bpp
            out[r * row_len:(r + 1) * row_len] = self._data[src:src + row_len]
        return out

    def _store_region(self, rect, packed):
        x, y, w, h = rect
        bpp = self._format.bytes_per_pixel
        row_len = w * bpp
        for r in range(h):
            dst = (y + r) * self._stride + x * bpp
            self._data[dst:dst + row_len] = packed[r * row_len:(r + 1) * row_len]


def convert_samples(packed, size, src_format, dst_format):
    """Convert packed rows between pixel formats using Pillow's raw codecs."""
    src_format = PixelFormat(src_format)
    dst_format = PixelFormat(dst_format)
    if src_format == dst_format:
        return bytearray(packed)
    img = Image.frombuffer(src_format.pil_mode, size, bytes(packed), "raw", src_format.value, 0, 1)
    if img.mode != dst_format.pil_mode:
        img = img.convert(dst_format.pil_mode)
    return bytearray(img.tobytes("raw", dst_format.value))


class BufferGuard(object):
    """
    Scoped pin of a bitmap region for native code.

    While held, ``address`` points at the first sample of the region and stays
    valid and unmoved: the bytearray cannot be resized while a ctypes view of it
    exists. The bitmap's locked state is released exactly once, on the first
    call to release() or on leaving the ``with`` block, whatever the exit path.

    If the requested pixel format differs from the bitmap's, READ_ONLY access
    reads from a converted copy, and WRITE_ONLY access collects into a scratch
    buffer that is converted back into the bitmap on a clean release.
    """

    def __init__(self, bitmap, rect=None, mode=LockMode.READ_ONLY, pixel_format=None):
        if rect is None:
            rect = (0, 0, bitmap.width, bitmap.height)
        x, y, w, h = rect
        if x < 0 or y < 0 or w <= 0 or h <= 0 or x + w > bitmap.width or y + h > bitmap.height:
            raise WpPreconditionError(f"Lock rectangle {rect} outside {bitmap.width}x{bitmap.height} bitmap")
        if bitmap.locked:
            raise WpBitmapException("Bitmap region is already locked")

        self.bitmap = bitmap
        self.rect = (x, y, w, h)
        self.mode = LockMode(mode)
        self.pixel_format = PixelFormat(pixel_format) if pixel_format else bitmap.pixel_format
        self.width = w
        self.height = h
        self._scratch = None
        self._released = False

        if self.pixel_format == bitmap.pixel_format:
            buf = bitmap._data
            offset = y * bitmap.stride + x * bitmap.pixel_format.bytes_per_pixel
            self.stride = bitmap.stride
        else:
            if self.mode == LockMode.READ_ONLY:
                buf = convert_samples(bitmap._region_bytes(self.rect), (w, h),
                                      bitmap.pixel_format, self.pixel_format)
            else:
                buf = bytearray(w * h * self.pixel_format.bytes_per_pixel)
            self._scratch = buf
            offset = 0
            self.stride = w * self.pixel_format.bytes_per_pixel

        self._pinned = (c_uint8 * len(buf)).from_buffer(buf)
        self.address = addressof(self._pinned) + offset
        self.size_bytes = self.stride * (h - 1) + w * self.pixel_format.bytes_per_pixel

        bitmap._locked = True
        bitmap.lock_count += 1
        wbstats.inc_stat('guard_acquire')
        log.debug(f"BufferGuard: locked {self.rect} of {bitmap} as {self.pixel_format.value} ({self.mode.name})")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release(commit=exc_type is None)
        return False

    @property
    def released(self):
        return self._released

    def release(self, commit=True):
        if self._released:
            return
        self._released = True
        try:
            # Drop the ctypes view first so the bytearray export goes away
            self._pinned = None
            self.address = None
            if commit and self._scratch is not None and self.mode == LockMode.WRITE_ONLY:
                self.bitmap._store_region(
                    self.rect,
                    convert_samples(self._scratch, (self.width, self.height),
                                    self.pixel_format, self.bitmap.pixel_format)
                )
        finally:
            self._scratch = None
            self.bitmap._locked = False
            self.bitmap.unlock_count += 1
            wbstats.inc_stat('guard_release')
            log.debug(f"BufferGuard: unlocked {self.bitmap}")


## factories
def new(mode, wh, color=(0, 0, 0)):
    """New bitmap filled with ``color``, given in the bitmap's own channel order."""
    pixel_format = PixelFormat(mode)
    bmp = WpBitmap(wh[0], wh[1], pixel_format)
    px = bytes(color)
    if len(px) == 3 and pixel_format.has_alpha:
        px = px + b'\xff'
    if len(px) != pixel_format.bytes_per_pixel:
        raise WpPreconditionError(f"Color {color} does not match {pixel_format.value}")
    row = px * wh[0]
    for r in range(wh[1]):
        off = r * bmp.stride
        bmp._data[off:off + len(row)] = row
    return bmp


def from_bytes(data, wh, mode=PixelFormat.BGR, stride=None):
    pixel_format = PixelFormat(mode)
    if stride is None:
        stride = wh[0] * pixel_format.bytes_per_pixel
    return WpBitmap(wh[0], wh[1], pixel_format, stride=stride, data=bytearray(data))


def from_pil(img, mode=None):
    """
    Copy a Pillow image into a new bitmap.

    Defaults to BGRA for images with transparency and BGR otherwise, the
    sample orders the native importer is fed with.
    """
    has_alpha = img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)
    if mode is None:
        mode = PixelFormat.BGRA if has_alpha else PixelFormat.BGR
    pixel_format = PixelFormat(mode)
    if img.mode != pixel_format.pil_mode:
        img = img.convert(pixel_format.pil_mode)
    return from_bytes(img.tobytes("raw", pixel_format.value), img.size, pixel_format)
