"""
WpErrors.py - Exceptions raised by the libwebp bridge

One class per failure category so callers can tell an unusable native
library apart from a rejected config, an encoder failure or a bad
bitstream without parsing messages.
"""

from enum import IntEnum


class WebPEncodingError(IntEnum):
    """Encoder error codes, as left in WebPPicture.error_code."""
    VP8_ENC_OK = 0
    VP8_ENC_ERROR_OUT_OF_MEMORY = 1
    VP8_ENC_ERROR_BITSTREAM_OUT_OF_MEMORY = 2
    VP8_ENC_ERROR_NULL_PARAMETER = 3
    VP8_ENC_ERROR_INVALID_CONFIGURATION = 4
    VP8_ENC_ERROR_BAD_DIMENSION = 5
    VP8_ENC_ERROR_PARTITION0_OVERFLOW = 6
    VP8_ENC_ERROR_PARTITION_OVERFLOW = 7
    VP8_ENC_ERROR_BAD_WRITE = 8
    VP8_ENC_ERROR_FILE_TOO_BIG = 9
    VP8_ENC_ERROR_USER_ABORT = 10
    VP8_ENC_ERROR_LAST = 11


class VP8StatusCode(IntEnum):
    """Decoder status codes."""
    VP8_STATUS_OK = 0
    VP8_STATUS_OUT_OF_MEMORY = 1
    VP8_STATUS_INVALID_PARAM = 2
    VP8_STATUS_BITSTREAM_ERROR = 3
    VP8_STATUS_UNSUPPORTED_FEATURE = 4
    VP8_STATUS_SUSPENDED = 5
    VP8_STATUS_USER_ABORT = 6
    VP8_STATUS_NOT_ENOUGH_DATA = 7


class WebPException(Exception):
    pass


class WpConfigurationError(WebPException):
    """Unsupported platform or native library that cannot be loaded."""
    pass


class WpAbiError(WebPException):
    """The loaded library does not speak the ABI this bridge was written against."""
    pass


class WpInvalidConfigError(WebPException):
    pass


class WpOutOfMemoryError(WebPException, MemoryError):
    pass


class WpPreconditionError(WebPException, ValueError):
    pass


class WpDecodeError(WebPException):
    pass


class WpBitmapException(WebPException):
    pass


class WpEncodeError(WebPException):
    """WebPEncode() failed; ``code`` is the picture's error code."""

    def __init__(self, code, context=None):
        try:
            self.code = WebPEncodingError(code)
            self.name = self.code.name
        except ValueError:
            self.code = code
            self.name = f"UNKNOWN_ENCODING_ERROR_{code}"
        msg = f"Encoding error: {self.name}"
        if context:
            msg = f"{msg} ({context})"
        super().__init__(msg)


class WpStatusError(WebPException):
    """A decoder entry point returned a non-OK VP8StatusCode."""
    status = None

    def __init__(self, status, context=None):
        try:
            self.status = VP8StatusCode(status)
            self.name = self.status.name
        except ValueError:
            self.status = status
            self.name = f"UNKNOWN_STATUS_{status}"
        msg = self.name
        if context:
            msg = f"{msg} ({context})"
        super().__init__(msg)


class WpStatusOutOfMemoryError(WpStatusError, MemoryError):
    pass


class WpInvalidParamError(WpStatusError):
    pass


class WpBitstreamError(WpStatusError):
    pass


class WpUnsupportedFeatureError(WpStatusError):
    pass


class WpSuspendedError(WpStatusError):
    pass


class WpUserAbortError(WpStatusError):
    pass


class WpNotEnoughDataError(WpStatusError):
    pass


_STATUS_ERRORS = {
    VP8StatusCode.VP8_STATUS_OUT_OF_MEMORY: WpStatusOutOfMemoryError,
    VP8StatusCode.VP8_STATUS_INVALID_PARAM: WpInvalidParamError,
    VP8StatusCode.VP8_STATUS_BITSTREAM_ERROR: WpBitstreamError,
    VP8StatusCode.VP8_STATUS_UNSUPPORTED_FEATURE: WpUnsupportedFeatureError,
    VP8StatusCode.VP8_STATUS_SUSPENDED: WpSuspendedError,
    VP8StatusCode.VP8_STATUS_USER_ABORT: WpUserAbortError,
    VP8StatusCode.VP8_STATUS_NOT_ENOUGH_DATA: WpNotEnoughDataError,
}


def status_error(status, context=None) -> WpStatusError:
    """Build the exception matching a VP8StatusCode."""
    try:
        cls = _STATUS_ERRORS.get(VP8StatusCode(status), WpStatusError)
    except ValueError:
        cls = WpStatusError
    return cls(status, context)
