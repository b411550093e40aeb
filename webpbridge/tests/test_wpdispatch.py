"""
test_wpdispatch.py - Platform dispatcher, record layouts and library loading

Tests:
- Table selection by pointer width, unsupported widths
- ctypes record sizes against the published ABI
- ABI stamps passed through to the native initializers
- Load-once / fail-once caching
"""

from ctypes import sizeof
from unittest import mock

import pytest

from webpbridge.utils import dylibs_loader
from webpbridge.utils.constants import (
    POINTER_WIDTH, WEBP_DECODER_ABI_VERSION, WEBP_ENCODER_ABI_VERSION,
)
from webpbridge.wpnative import WpDispatch
from webpbridge.wpnative.WpErrors import WpAbiError, WpConfigurationError
from webpbridge.wpnative.WpStructs import (
    EXPECTED_SIZES, WebPAuxStats, WebPBitstreamFeatures, WebPConfig, WebPPicture,
    WebPPreset, layout_mismatches,
)


def _mock_lib(version=0x010500):
    lib = mock.MagicMock()
    lib.WebPGetDecoderVersion.return_value = version
    lib.WebPGetEncoderVersion.return_value = version
    return lib


class TestTableSelection:

    def test_four_byte_pointers(self):
        assert WpDispatch.select_table(4) is WpDispatch.NativeTable32

    def test_eight_byte_pointers(self):
        assert WpDispatch.select_table(8) is WpDispatch.NativeTable64

    @pytest.mark.parametrize("width", [0, 2, 16])
    def test_unsupported_width_fails_fast(self, width):
        with pytest.raises(WpConfigurationError):
            WpDispatch.select_table(width)

    def test_default_is_process_width(self):
        assert WpDispatch.select_table().pointer_width == POINTER_WIDTH

    def test_tables_carry_their_own_layout(self):
        assert WpDispatch.NativeTable32.expected_sizes['WebPPicture'] == 172
        assert WpDispatch.NativeTable64.expected_sizes['WebPPicture'] == 256

    def test_width_specific_library_names(self):
        assert "x86" in WpDispatch.NativeTable32.lib_name()
        assert "x64" in WpDispatch.NativeTable64.lib_name()


class TestRecordLayout:
    """Records must match the published ABI for this process's pointer width."""

    def test_no_mismatch_for_this_process(self):
        assert layout_mismatches(EXPECTED_SIZES[POINTER_WIDTH]) == {}

    def test_width_independent_records(self):
        assert sizeof(WebPConfig) == 116
        assert sizeof(WebPAuxStats) == 188
        assert sizeof(WebPBitstreamFeatures) == 40

    def test_picture_size(self):
        assert sizeof(WebPPicture) == EXPECTED_SIZES[POINTER_WIDTH]['WebPPicture']

    def test_mismatch_is_reported(self):
        expected = dict(EXPECTED_SIZES[POINTER_WIDTH], WebPConfig=120)
        assert layout_mismatches(expected) == {'WebPConfig': (116, 120)}


class TestNativeTable:

    def _table(self, lib=None):
        cls = WpDispatch.select_table()
        return cls(lib or _mock_lib(), "<mock>")

    def test_signatures_set_at_construction(self):
        lib = _mock_lib()
        self._table(lib)
        assert lib.WebPEncode.argtypes is not None
        assert lib.WebPEncode.restype is not None
        assert lib.WebPDecodeBGRAInto.argtypes is not None

    def test_config_init_stamps_encoder_abi(self):
        lib = _mock_lib()
        lib.WebPConfigInitInternal.return_value = 1
        table = self._table(lib)
        assert table.config_init(WebPConfig(), WebPPreset.PHOTO, 80)
        args = lib.WebPConfigInitInternal.call_args[0]
        assert args[1] == WebPPreset.PHOTO
        assert args[2] == 80.0
        assert args[3] == WEBP_ENCODER_ABI_VERSION

    def test_picture_init_stamps_encoder_abi(self):
        lib = _mock_lib()
        lib.WebPPictureInitInternal.return_value = 0
        table = self._table(lib)
        assert table.picture_init(WebPPicture()) is False
        assert lib.WebPPictureInitInternal.call_args[0][1] == WEBP_ENCODER_ABI_VERSION

    def test_get_features_stamps_decoder_abi(self):
        lib = _mock_lib()
        lib.WebPGetFeaturesInternal.return_value = 3
        table = self._table(lib)
        assert table.get_features(b'abc', WebPBitstreamFeatures()) == 3
        args = lib.WebPGetFeaturesInternal.call_args[0]
        assert args[1] == 3
        assert args[3] == WEBP_DECODER_ABI_VERSION

    def test_validate_requires_exactly_one(self):
        lib = _mock_lib()
        table = self._table(lib)
        lib.WebPValidateConfig.return_value = 1
        assert table.validate_config(WebPConfig()) is True
        lib.WebPValidateConfig.return_value = 0
        assert table.validate_config(WebPConfig()) is False

    def test_simple_encode_without_output_frees_nothing(self):
        lib = _mock_lib()
        lib.WebPEncodeBGR.return_value = 0
        table = self._table(lib)
        from webpbridge.wpimage.WpBitmap import PixelFormat
        assert table.encode_simple(PixelFormat.BGR, 0, 1, 1, 4, 75) == b''
        lib.WebPFree.assert_not_called()

    def test_check_abi_accepts_current_library(self):
        self._table(_mock_lib(0x010500)).check_abi()

    def test_check_abi_rejects_old_library(self):
        with pytest.raises(WpAbiError, match="older than"):
            self._table(_mock_lib(0x000500)).check_abi()

    def test_check_abi_rejects_layout_mismatch(self):
        cls = WpDispatch.select_table()

        class BadLayout(cls):
            expected_sizes = dict(cls.expected_sizes, WebPAuxStats=184)

        with pytest.raises(WpAbiError, match="layout"):
            BadLayout(_mock_lib(), "<mock>").check_abi()

    def test_layout_check_can_be_disabled(self):
        cls = WpDispatch.select_table()

        class BadLayout(cls):
            expected_sizes = dict(cls.expected_sizes, WebPAuxStats=184)

        BadLayout(_mock_lib(), "<mock>").check_abi(check_layout=False)


class TestLibraryLoading:

    @pytest.fixture
    def unloaded(self, monkeypatch):
        monkeypatch.setattr(WpDispatch, "_native", None)
        monkeypatch.setattr(WpDispatch, "_load_error", None)

    def test_load_error_is_cached(self, unloaded, monkeypatch):
        attempts = []

        def failing_load():
            attempts.append(1)
            raise WpConfigurationError("libwebp not found")

        monkeypatch.setattr(WpDispatch, "_load_native", failing_load)
        for _ in range(3):
            with pytest.raises(WpConfigurationError):
                WpDispatch.get_native()
        assert len(attempts) == 1
        assert WpDispatch.is_available() is False

    def test_loaded_table_is_reused(self, unloaded, monkeypatch):
        table = object()
        loads = []
        monkeypatch.setattr(WpDispatch, "_load_native", lambda: loads.append(1) or table)
        assert WpDispatch.get_native() is table
        assert WpDispatch.get_native() is table
        assert loads == [1]

    def test_missing_path_is_not_opened(self, monkeypatch):
        opened = []
        monkeypatch.setattr(dylibs_loader, "webp_lib_candidates",
                            lambda width, override=None: ["/nonexistent/dir/libwebp_x64.so"])
        monkeypatch.setattr(WpDispatch, "CDLL", lambda path: opened.append(path))
        with pytest.raises(WpConfigurationError, match="not found"):
            WpDispatch._open_library(WpDispatch.NativeTable64)
        assert opened == []

    def test_bare_name_goes_to_system_loader(self, monkeypatch):
        opened = []

        def fake_cdll(path):
            opened.append(path)
            raise OSError("cannot open shared object file")

        monkeypatch.setattr(dylibs_loader, "webp_lib_candidates",
                            lambda width, override=None: ["libwebp.so.7"])
        monkeypatch.setattr(WpDispatch, "CDLL", fake_cdll)
        with pytest.raises(WpConfigurationError):
            WpDispatch._open_library(WpDispatch.NativeTable64)
        assert opened == ["libwebp.so.7"]

    def test_format_version(self):
        assert WpDispatch.format_version(0x010502) == "1.5.2"


class TestLibraryCandidates:

    def test_override_comes_first(self):
        candidates = dylibs_loader.webp_lib_candidates(8, "/opt/webp/libwebp.so")
        assert candidates[0] == "/opt/webp/libwebp.so"

    def test_bundled_name_per_width(self):
        assert "x86" in dylibs_loader.webp_lib_name(4)
        assert "x64" in dylibs_loader.webp_lib_name(8)

    def test_invalid_width(self):
        with pytest.raises(ValueError):
            dylibs_loader.webp_lib_name(2)
