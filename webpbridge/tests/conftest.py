"""
Shared fixtures.

FakeNative stands in for a NativeTable: same method names, same ctypes
records, but the work is done in Python and every call is recorded. The
encoder drives the real writer callback through ``picture.writer`` so the
sink registry is exercised exactly as libwebp would exercise it.
"""

from ctypes import (
    POINTER, addressof, c_uint8, cast, memset, pointer, sizeof, string_at,
)

import pytest

from webpbridge import wbstats
from webpbridge.wpnative import WpDispatch
from webpbridge.wpnative.WpErrors import VP8StatusCode, WebPEncodingError


def _in(value, lo, hi):
    return lo <= value <= hi


class FakeNative:
    pointer_width = 8
    lib_path = "<fake>"

    def __init__(self):
        self.calls = []
        self.fail = set()
        self.encode_error = WebPEncodingError.VP8_ENC_ERROR_BAD_DIMENSION
        self.chunks = [b'RIFF\x1e\x00\x00\x00WEBP', b'VP8 \x12\x00\x00\x00', b'\x00' * 18]
        self.features = dict(width=64, height=48, has_alpha=0, has_animation=0, format=1)
        self.features_status = VP8StatusCode.VP8_STATUS_OK
        self.distortion = [41.0, 42.0, 43.0, 99.0, 42.5]
        self.decode_fill = 0x7f
        self.imported = []
        self.live = set()
        self.seen_tokens = []
        self.seen_configs = []

    def _call(self, name):
        self.calls.append(name)
        return name not in self.fail

    def count(self, name):
        return self.calls.count(name)

    # -- version -----------------------------------------------------------

    def encoder_version(self):
        return 0x010500

    def decoder_version(self):
        return 0x010500

    # -- config ------------------------------------------------------------

    def config_init(self, config, preset, quality):
        if not self._call('config_init') or not _in(quality, 0, 100):
            return False
        memset(addressof(config), 0, sizeof(config))
        config.quality = quality
        config.method = 4
        config.segments = 4
        config.sns_strength = 50
        config.filter_strength = 60
        config.filter_type = 1
        config.pass_ = 1
        config.alpha_compression = 1
        config.alpha_filtering = 1
        config.alpha_quality = 100
        config.near_lossless = 100
        config.qmax = 100
        return True

    def config_lossless_preset(self, config, level):
        if not self._call('config_lossless_preset') or not _in(level, 0, 9):
            return False
        config.lossless = 1
        config.method = min(level, 6)
        config.quality = 25.0 + 8 * level
        return True

    def validate_config(self, config):
        self._call('validate_config')
        return all((
            _in(config.quality, 0, 100),
            _in(config.method, 0, 6),
            _in(config.segments, 1, 4),
            _in(config.pass_, 1, 10),
            _in(config.partitions, 0, 3),
            _in(config.autofilter, 0, 1),
            _in(config.lossless, 0, 1),
            _in(config.near_lossless, 0, 100),
            _in(config.thread_level, 0, 1),
            _in(config.qmin, 0, 100) and _in(config.qmax, 0, 100) and config.qmin <= config.qmax,
        ))

    # -- picture -----------------------------------------------------------

    def picture_init(self, picture):
        if not self._call('picture_init'):
            return False
        memset(addressof(picture), 0, sizeof(picture))
        return True

    def picture_import(self, picture, pixel_format, address, stride):
        if not self._call('picture_import'):
            return False
        row = picture.width * pixel_format.bytes_per_pixel
        size = stride * (picture.height - 1) + row
        self.imported.append((pixel_format, stride, string_at(address, size)))
        self.live.add(addressof(picture))
        return True

    def encode(self, config, picture):
        self._call('encode')
        self.seen_tokens.append(picture.custom_ptr)
        self.seen_configs.append((config.method, config.pass_, config.lossless, config.near_lossless))
        if 'encode' in self.fail:
            picture.error_code = self.encode_error
            return False
        total = 0
        for chunk in self.chunks:
            buf = (c_uint8 * len(chunk)).from_buffer_copy(chunk)
            if not picture.writer(cast(buf, POINTER(c_uint8)), len(chunk), pointer(picture)):
                picture.error_code = WebPEncodingError.VP8_ENC_ERROR_BAD_WRITE
                return False
            total += len(chunk)
        if picture.stats:
            picture.stats.contents.coded_size = total
            picture.stats.contents.lossless_features = 0b0101 if config.lossless else 0
        return True

    def picture_free(self, picture):
        self._call('picture_free')
        self.live.discard(addressof(picture))

    def picture_distortion(self, source, reference, metric, result):
        if not self._call('picture_distortion'):
            return False
        for i, value in enumerate(self.distortion):
            result[i] = value
        return True

    # -- decode side -------------------------------------------------------

    def get_info(self, data):
        self._call('get_info')
        if len(data) < 12 or 'get_info' in self.fail:
            return False, 0, 0
        return True, self.features['width'], self.features['height']

    def get_features(self, data, features):
        self._call('get_features')
        if len(data) < 12:
            return VP8StatusCode.VP8_STATUS_NOT_ENOUGH_DATA
        if self.features_status:
            return self.features_status
        for k, v in self.features.items():
            setattr(features, k, v)
        return VP8StatusCode.VP8_STATUS_OK

    def decode_into(self, pixel_format, data, address, size, stride):
        if not self._call('decode_into'):
            return False
        memset(address, self.decode_fill, size)
        return True

    # -- one-shot encoders -------------------------------------------------

    def encode_simple(self, pixel_format, address, width, height, stride, quality):
        if not self._call('encode_simple'):
            return b''
        return b'RIFF\x00\x00\x00\x00WEBPVP8 simple'

    def encode_simple_lossless(self, pixel_format, address, width, height, stride):
        if not self._call('encode_simple_lossless'):
            return b''
        return b'RIFF\x00\x00\x00\x00WEBPVP8Lsimple'


@pytest.fixture(autouse=True)
def clean_stats():
    wbstats.reset_stats()
    yield
    wbstats.reset_stats()


@pytest.fixture
def fake_native(monkeypatch):
    fake = FakeNative()
    monkeypatch.setattr(WpDispatch, "_native", fake)
    monkeypatch.setattr(WpDispatch, "_load_error", None)
    return fake


@pytest.fixture
def real_native():
    if not WpDispatch.is_available():
        pytest.skip("libwebp not available")
    return WpDispatch.get_native()
