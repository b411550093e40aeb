"""
WpDispatch.py - Width-specific libwebp entry points

libwebp ships one binary per pointer width (libwebp_x86 / libwebp_x64) with
identical symbol names. This module is the only place aware of that split:
the table class matching the process's pointer width is picked once, the
library loaded once, and every other module goes through get_native().

Usage:
    from webpbridge.wpnative import WpDispatch

    native = WpDispatch.get_native()
    print(native.decoder_version())
"""

from ctypes import (
    CDLL, POINTER, byref, c_char_p, c_float, c_int, c_size_t,
    c_uint8, c_void_p, string_at,
)
import logging
import os
import threading
from typing import Optional, Tuple

from webpbridge.utils import dylibs_loader
from webpbridge.utils.constants import (
    MIN_LIBRARY_VERSION, POINTER_WIDTH,
    WEBP_DECODER_ABI_VERSION, WEBP_ENCODER_ABI_VERSION,
)
from webpbridge.wpimage.WpBitmap import PixelFormat
from webpbridge.wpnative.WpErrors import WpAbiError, WpConfigurationError
from webpbridge.wpnative.WpStructs import (
    EXPECTED_SIZES, WebPBitstreamFeatures, WebPConfig, WebPPicture,
    layout_mismatches,
)

log = logging.getLogger(__name__)

# ============================================================================
# Native function tables
# ============================================================================

_IMPORTERS = {
    PixelFormat.BGR: 'WebPPictureImportBGR',
    PixelFormat.BGRA: 'WebPPictureImportBGRA',
    PixelFormat.RGB: 'WebPPictureImportRGB',
    PixelFormat.RGBA: 'WebPPictureImportRGBA',
}

_DECODERS = {
    PixelFormat.BGR: 'WebPDecodeBGRInto',
    PixelFormat.BGRA: 'WebPDecodeBGRAInto',
    PixelFormat.RGB: 'WebPDecodeRGBInto',
    PixelFormat.RGBA: 'WebPDecodeRGBAInto',
}

_SIMPLE_ENCODERS = {
    PixelFormat.BGR: 'WebPEncodeBGR',
    PixelFormat.BGRA: 'WebPEncodeBGRA',
    PixelFormat.RGB: 'WebPEncodeRGB',
    PixelFormat.RGBA: 'WebPEncodeRGBA',
}

_SIMPLE_LOSSLESS_ENCODERS = {
    PixelFormat.BGR: 'WebPEncodeLosslessBGR',
    PixelFormat.BGRA: 'WebPEncodeLosslessBGRA',
    PixelFormat.RGB: 'WebPEncodeLosslessRGB',
    PixelFormat.RGBA: 'WebPEncodeLosslessRGBA',
}


def format_version(v: int) -> str:
    return f"{(v >> 16) & 0xff}.{(v >> 8) & 0xff}.{v & 0xff}"


class NativeTable(object):
    """
    libwebp entry points for one pointer width.

    Signatures are configured once, in __init__, and never touched again.
    Methods take and return Python values and ctypes records; byref() and
    the ABI stamps stay in here.
    """
    pointer_width = None
    expected_sizes = None

    def __init__(self, lib, lib_path=None):
        self._lib = lib
        self.lib_path = lib_path
        self._setup_signatures(lib)

    @classmethod
    def lib_name(cls) -> str:
        return dylibs_loader.webp_lib_name(cls.pointer_width)

    def _setup_signatures(self, lib):
        lib.WebPGetEncoderVersion.argtypes = []
        lib.WebPGetEncoderVersion.restype = c_int
        lib.WebPGetDecoderVersion.argtypes = []
        lib.WebPGetDecoderVersion.restype = c_int

        lib.WebPConfigInitInternal.argtypes = [POINTER(WebPConfig), c_int, c_float, c_int]
        lib.WebPConfigInitInternal.restype = c_int
        lib.WebPConfigLosslessPreset.argtypes = [POINTER(WebPConfig), c_int]
        lib.WebPConfigLosslessPreset.restype = c_int
        lib.WebPValidateConfig.argtypes = [POINTER(WebPConfig)]
        lib.WebPValidateConfig.restype = c_int

        lib.WebPPictureInitInternal.argtypes = [POINTER(WebPPicture), c_int]
        lib.WebPPictureInitInternal.restype = c_int
        for name in _IMPORTERS.values():
            fn = getattr(lib, name)
            fn.argtypes = [POINTER(WebPPicture), c_void_p, c_int]
            fn.restype = c_int
        lib.WebPEncode.argtypes = [POINTER(WebPConfig), POINTER(WebPPicture)]
        lib.WebPEncode.restype = c_int
        lib.WebPPictureFree.argtypes = [POINTER(WebPPicture)]
        lib.WebPPictureFree.restype = None
        lib.WebPPictureDistortion.argtypes = [POINTER(WebPPicture), POINTER(WebPPicture), c_int, POINTER(c_float)]
        lib.WebPPictureDistortion.restype = c_int

        lib.WebPGetInfo.argtypes = [c_char_p, c_size_t, POINTER(c_int), POINTER(c_int)]
        lib.WebPGetInfo.restype = c_int
        lib.WebPGetFeaturesInternal.argtypes = [c_char_p, c_size_t, POINTER(WebPBitstreamFeatures), c_int]
        lib.WebPGetFeaturesInternal.restype = c_int
        for name in _DECODERS.values():
            fn = getattr(lib, name)
            fn.argtypes = [c_char_p, c_size_t, c_void_p, c_size_t, c_int]
            fn.restype = c_void_p

        for name in list(_SIMPLE_ENCODERS.values()):
            fn = getattr(lib, name)
            fn.argtypes = [c_void_p, c_int, c_int, c_int, c_float, POINTER(POINTER(c_uint8))]
            fn.restype = c_size_t
        for name in list(_SIMPLE_LOSSLESS_ENCODERS.values()):
            fn = getattr(lib, name)
            fn.argtypes = [c_void_p, c_int, c_int, c_int, POINTER(POINTER(c_uint8))]
            fn.restype = c_size_t
        lib.WebPFree.argtypes = [c_void_p]
        lib.WebPFree.restype = None

    # -- version / ABI ------------------------------------------------------

    def encoder_version(self) -> int:
        return self._lib.WebPGetEncoderVersion()

    def decoder_version(self) -> int:
        return self._lib.WebPGetDecoderVersion()

    def check_abi(self, check_layout=True):
        """Refuse a library or record layout this bridge was not written against."""
        if check_layout:
            bad = layout_mismatches(self.expected_sizes)
            if bad:
                raise WpAbiError(f"Native record layout mismatch for {self.pointer_width}-byte pointers: {bad}")

        for what, version in (("encoder", self.encoder_version()), ("decoder", self.decoder_version())):
            if version < MIN_LIBRARY_VERSION:
                raise WpAbiError(
                    f"libwebp {what} {format_version(version)} is older than "
                    f"{format_version(MIN_LIBRARY_VERSION)}"
                )

    # -- config -------------------------------------------------------------

    def config_init(self, config, preset, quality) -> bool:
        return self._lib.WebPConfigInitInternal(byref(config), int(preset), float(quality),
                                                WEBP_ENCODER_ABI_VERSION) != 0

    def config_lossless_preset(self, config, level) -> bool:
        return self._lib.WebPConfigLosslessPreset(byref(config), int(level)) != 0

    def validate_config(self, config) -> bool:
        return self._lib.WebPValidateConfig(byref(config)) == 1

    # -- picture ------------------------------------------------------------

    def picture_init(self, picture) -> bool:
        return self._lib.WebPPictureInitInternal(byref(picture), WEBP_ENCODER_ABI_VERSION) != 0

    def picture_import(self, picture, pixel_format, address, stride) -> bool:
        fn = getattr(self._lib, _IMPORTERS[PixelFormat(pixel_format)])
        return fn(byref(picture), address, stride) != 0

    def encode(self, config, picture) -> bool:
        return self._lib.WebPEncode(byref(config), byref(picture)) == 1

    def picture_free(self, picture):
        self._lib.WebPPictureFree(byref(picture))

    def picture_distortion(self, source, reference, metric, result) -> bool:
        return self._lib.WebPPictureDistortion(byref(source), byref(reference), int(metric), result) != 0

    # -- decode side --------------------------------------------------------

    def get_info(self, data: bytes) -> Tuple[bool, int, int]:
        width = c_int()
        height = c_int()
        ok = self._lib.WebPGetInfo(data, len(data), byref(width), byref(height))
        return ok != 0, width.value, height.value

    def get_features(self, data: bytes, features) -> int:
        return self._lib.WebPGetFeaturesInternal(data, len(data), byref(features), WEBP_DECODER_ABI_VERSION)

    def decode_into(self, pixel_format, data: bytes, address, size, stride) -> bool:
        fn = getattr(self._lib, _DECODERS[PixelFormat(pixel_format)])
        return fn(data, len(data), address, size, stride) is not None

    # -- one-shot encoders --------------------------------------------------

    def _copy_and_free(self, size, output) -> bytes:
        try:
            if size == 0 or not output:
                return b''
            return string_at(output, size)
        finally:
            if output:
                self._lib.WebPFree(output)

    def encode_simple(self, pixel_format, address, width, height, stride, quality) -> bytes:
        fn = getattr(self._lib, _SIMPLE_ENCODERS[PixelFormat(pixel_format)])
        output = POINTER(c_uint8)()
        size = fn(address, width, height, stride, float(quality), byref(output))
        return self._copy_and_free(size, output)

    def encode_simple_lossless(self, pixel_format, address, width, height, stride) -> bytes:
        fn = getattr(self._lib, _SIMPLE_LOSSLESS_ENCODERS[PixelFormat(pixel_format)])
        output = POINTER(c_uint8)()
        size = fn(address, width, height, stride, byref(output))
        return self._copy_and_free(size, output)


class NativeTable32(NativeTable):
    pointer_width = 4
    expected_sizes = EXPECTED_SIZES[4]


class NativeTable64(NativeTable):
    pointer_width = 8
    expected_sizes = EXPECTED_SIZES[8]


_TABLES = {
    4: NativeTable32,
    8: NativeTable64,
}


def select_table(pointer_width: int = POINTER_WIDTH):
    """Table class for a pointer width. Anything but 4 or 8 is an unsupported platform."""
    try:
        return _TABLES[pointer_width]
    except KeyError:
        raise WpConfigurationError(
            f"Unsupported native pointer width: {pointer_width} bytes"
        ) from None


# ============================================================================
# Library Loading
# ============================================================================

_native = None
_load_error = None
_load_lock = threading.Lock()


def _open_library(table_cls, override=None):
    tried = []
    for path in dylibs_loader.webp_lib_candidates(table_cls.pointer_width, override):
        # Bare names from find_library() are resolved by the system loader
        if os.path.dirname(path) and not os.path.exists(path):
            tried.append(path)
            continue
        try:
            log.debug(f"Loading libwebp from: {path}")
            return CDLL(path), path
        except OSError as e:
            log.debug(f"Failed to load {path}: {e}")
            tried.append(path)
    raise WpConfigurationError(f"libwebp not found. Tried: {tried}")


def _load_native(pointer_width: int = POINTER_WIDTH) -> NativeTable:
    from webpbridge.wbconfig import CFG

    table_cls = select_table(pointer_width)
    override = getattr(CFG.native, 'library_path', '') or None
    lib, path = _open_library(table_cls, override)
    try:
        table = table_cls(lib, path)
    except AttributeError as e:
        raise WpAbiError(f"libwebp at {path} is missing an entry point: {e}") from e
    table.check_abi(bool(getattr(CFG.native, 'check_layout', True)))
    log.info(
        f"Loaded libwebp {format_version(table.decoder_version())} "
        f"({table_cls.__name__}) from {path}"
    )
    return table


def get_native() -> NativeTable:
    """The process-wide native table, loaded on first use."""
    global _native, _load_error

    if _native is not None:
        return _native
    if _load_error is not None:
        raise _load_error

    with _load_lock:
        if _native is not None:
            return _native
        if _load_error is not None:
            raise _load_error
        try:
            _native = _load_native()
        except (WpConfigurationError, WpAbiError) as e:
            _load_error = e
            log.warning(f"libwebp not available: {e}")
            raise
    return _native


def is_available() -> bool:
    """Check if the native library can be loaded."""
    try:
        get_native()
        return True
    except (WpConfigurationError, WpAbiError):
        return False
