"""
test_wpbitmap.py - Bitmap abstraction and BufferGuard

Tests:
- Stride, factories and Pillow conversion
- Guard pins a stable address and releases exactly once on every exit path
- Format-converting read and write access
"""

from ctypes import memset, string_at

import pytest
from PIL import Image

from webpbridge import wbstats
from webpbridge.wpimage import WpBitmap
from webpbridge.wpimage.WpBitmap import BufferGuard, LockMode, PixelFormat
from webpbridge.wpnative.WpErrors import WpBitmapException, WpPreconditionError


class TestBitmap:

    def test_default_stride_is_padded(self):
        bmp = WpBitmap.WpBitmap(5, 2, PixelFormat.BGR)
        assert bmp.stride == 16
        assert len(bmp._data) == 32

    def test_stride_too_small(self):
        with pytest.raises(WpPreconditionError):
            WpBitmap.WpBitmap(4, 4, PixelFormat.BGRA, stride=12)

    def test_invalid_size(self):
        with pytest.raises(WpPreconditionError):
            WpBitmap.WpBitmap(0, 4)

    def test_new_fills_color(self):
        bmp = WpBitmap.new("BGR", (3, 2), (1, 2, 3))
        assert bmp.getpixel((2, 1)) == (1, 2, 3)
        assert bmp.tobytes() == bytes([1, 2, 3]) * 6

    def test_new_adds_opaque_alpha(self):
        bmp = WpBitmap.new("BGRA", (2, 2), (9, 8, 7))
        assert bmp.getpixel((0, 0)) == (9, 8, 7, 255)

    def test_new_rejects_wrong_color(self):
        with pytest.raises(WpPreconditionError):
            WpBitmap.new("BGR", (2, 2), (1, 2))

    def test_from_pil_defaults(self):
        rgb = Image.new("RGB", (4, 3), (10, 20, 30))
        bmp = WpBitmap.from_pil(rgb)
        assert bmp.pixel_format == PixelFormat.BGR
        assert bmp.getpixel((0, 0)) == (30, 20, 10)

        rgba = Image.new("RGBA", (4, 3), (10, 20, 30, 40))
        bmp = WpBitmap.from_pil(rgba)
        assert bmp.pixel_format == PixelFormat.BGRA
        assert bmp.getpixel((3, 2)) == (30, 20, 10, 40)

    def test_to_pil_round_trip(self):
        img = Image.new("RGB", (5, 3), (200, 100, 50))
        img.putpixel((4, 2), (1, 2, 3))
        bmp = WpBitmap.from_pil(img)
        assert bmp.to_pil().tobytes() == img.tobytes()

    def test_padded_rows_round_trip(self):
        img = Image.new("RGB", (5, 3), (7, 8, 9))
        bmp = WpBitmap.from_pil(img)
        padded = WpBitmap.WpBitmap(5, 3, PixelFormat.BGR)
        with padded.lock_bits(mode=LockMode.WRITE_ONLY) as guard:
            for r in range(3):
                row = bmp.tobytes()[r * 15:(r + 1) * 15]
                padded._data[r * guard.stride:r * guard.stride + 15] = row
        assert padded.tobytes() == bmp.tobytes()
        assert padded.to_pil().tobytes() == img.tobytes()


class TestBufferGuard:

    def test_address_points_at_pixels(self):
        bmp = WpBitmap.new("BGR", (2, 2), (1, 2, 3))
        with bmp.lock_bits() as guard:
            assert string_at(guard.address, 3) == b'\x01\x02\x03'
            assert guard.stride == bmp.stride
            assert guard.size_bytes == bmp.stride + 6

    def test_address_is_stable_while_held(self):
        bmp = WpBitmap.new("BGR", (8, 8))
        with bmp.lock_bits() as guard:
            first = guard.address
            with pytest.raises(BufferError):
                bmp._data.extend(b'\x00' * 1024)
            assert guard.address == first

    def test_release_once_on_normal_exit(self):
        bmp = WpBitmap.new("BGR", (2, 2))
        with bmp.lock_bits() as guard:
            assert bmp.locked
        assert not bmp.locked
        guard.release()
        assert (bmp.lock_count, bmp.unlock_count) == (1, 1)
        assert wbstats.outstanding_guards() == 0

    def test_release_once_on_exception(self):
        bmp = WpBitmap.new("BGR", (2, 2))
        with pytest.raises(RuntimeError):
            with bmp.lock_bits():
                raise RuntimeError("boom")
        assert not bmp.locked
        assert (bmp.lock_count, bmp.unlock_count) == (1, 1)

    def test_release_once_on_early_return(self):
        bmp = WpBitmap.new("BGR", (2, 2))

        def first_byte():
            with bmp.lock_bits() as guard:
                return string_at(guard.address, 1)

        assert first_byte() == b'\x00'
        assert (bmp.lock_count, bmp.unlock_count) == (1, 1)

    def test_double_lock_rejected(self):
        bmp = WpBitmap.new("BGR", (2, 2))
        with bmp.lock_bits():
            with pytest.raises(WpBitmapException):
                bmp.lock_bits()
        assert (bmp.lock_count, bmp.unlock_count) == (1, 1)

    def test_rect_outside_bitmap(self):
        bmp = WpBitmap.new("BGR", (2, 2))
        with pytest.raises(WpPreconditionError):
            BufferGuard(bmp, (1, 1, 2, 2))
        assert not bmp.locked

    def test_subrectangle(self):
        bmp = WpBitmap.new("BGR", (4, 4))
        bmp._data[bmp.stride * 2 + 3:bmp.stride * 2 + 6] = b'\x0a\x0b\x0c'
        with bmp.lock_bits((1, 2, 2, 2)) as guard:
            assert string_at(guard.address, 3) == b'\x0a\x0b\x0c'
            assert (guard.width, guard.height) == (2, 2)

    def test_read_converts_format(self):
        bmp = WpBitmap.new("BGR", (2, 1), (1, 2, 3))
        with bmp.lock_bits(pixel_format=PixelFormat.RGBA) as guard:
            assert guard.stride == 8
            assert string_at(guard.address, 8) == b'\x03\x02\x01\xff' * 2

    def test_write_converts_back_on_release(self):
        bmp = WpBitmap.WpBitmap(2, 1, PixelFormat.BGR)
        with bmp.lock_bits(mode=LockMode.WRITE_ONLY, pixel_format=PixelFormat.RGBA) as guard:
            memset(guard.address, 0x40, guard.size_bytes)
        assert bmp.tobytes() == b'\x40' * 6

    def test_write_discarded_on_exception(self):
        bmp = WpBitmap.WpBitmap(2, 1, PixelFormat.BGR)
        with pytest.raises(RuntimeError):
            with bmp.lock_bits(mode=LockMode.WRITE_ONLY, pixel_format=PixelFormat.RGBA) as guard:
                memset(guard.address, 0x40, guard.size_bytes)
                raise RuntimeError("decode failed")
        assert bmp.tobytes() == b'\x00' * 6
        assert not bmp.locked
