"""
WpStructs.py - ctypes mirrors of the libwebp public records

Field order, sizes and padding follow encode.h / decode.h for encoder ABI
0x020f and decoder ABI 0x0209. ctypes lays records out with the platform's
natural alignment, so the pointer-bearing WebPPicture differs between 32
and 64 bit processes while the all-int records do not. EXPECTED_SIZES is
the table the dispatcher checks against when the library loads; update it
together with the ABI constants in utils/constants.py.
"""

from ctypes import (
    CFUNCTYPE, POINTER, Structure, sizeof,
    c_float, c_int, c_size_t, c_uint8, c_uint32, c_void_p,
)
from enum import IntEnum, IntFlag

# ============================================================================
# Enumerations
# ============================================================================

class WebPPreset(IntEnum):
    """Predefined settings for WebPConfigInitInternal(), by type of source picture."""
    DEFAULT = 0
    PICTURE = 1     # digital picture, like portrait, inner shot
    PHOTO = 2       # outdoor photograph, with natural lighting
    DRAWING = 3     # hand or line drawing, with high-contrast details
    ICON = 4        # small-sized colorful images
    TEXT = 5        # text-like


class WebPImageHint(IntEnum):
    DEFAULT = 0
    PICTURE = 1
    PHOTO = 2
    GRAPH = 3


class DistortionMetric(IntEnum):
    PSNR = 0
    SSIM = 1
    LSIM = 2


class BitstreamFormat(IntEnum):
    UNDEFINED = 0   # mixed, or animation with both kinds of frames
    LOSSY = 1
    LOSSLESS = 2

    @property
    def label(self) -> str:
        return self.name.lower()


class LosslessFeatures(IntFlag):
    NONE = 0
    PREDICTION = 1
    CROSS_COLOR_TRANSFORM = 2
    SUBTRACT_GREEN = 4
    PALETTE = 8


# ============================================================================
# Records
# ============================================================================

class WebPConfig(Structure):
    """Encoder parameters. Maps to struct WebPConfig."""
    _fields_ = [
        ('lossless', c_int),            # 0=lossy, 1=lossless
        ('quality', c_float),           # 0 (smallest file) .. 100 (biggest)
        ('method', c_int),              # quality/speed trade-off, 0=fast .. 6=slower-better
        ('image_hint', c_int),          # WebPImageHint, lossless only
        ('target_size', c_int),
        ('target_PSNR', c_float),
        ('segments', c_int),            # [1..4]
        ('sns_strength', c_int),
        ('filter_strength', c_int),
        ('filter_sharpness', c_int),
        ('filter_type', c_int),
        ('autofilter', c_int),
        ('alpha_compression', c_int),
        ('alpha_filtering', c_int),
        ('alpha_quality', c_int),
        ('pass_', c_int),               # entropy-analysis passes [1..10]
        ('show_compressed', c_int),
        ('preprocessing', c_int),
        ('partitions', c_int),          # log2(token partitions) [0..3]
        ('partition_limit', c_int),
        ('emulate_jpeg_size', c_int),
        ('thread_level', c_int),
        ('low_memory', c_int),
        ('near_lossless', c_int),       # 0..100, 100 = off
        ('exact', c_int),
        ('use_delta_palette', c_int),
        ('use_sharp_yuv', c_int),
        ('qmin', c_int),
        ('qmax', c_int),
    ]

    def __repr__(self):
        return (f"WebPConfig(lossless={self.lossless}, quality={self.quality}, method={self.method}, "
                f"pass_={self.pass_}, segments={self.segments}, partitions={self.partitions}, "
                f"near_lossless={self.near_lossless}, thread_level={self.thread_level})")


class WebPAuxStats(Structure):
    """Side statistics filled in by WebPEncode() when picture.stats is set."""
    _fields_ = [
        ('coded_size', c_int),
        ('PSNR', c_float * 5),                  # Y, U, V, All, Alpha
        ('block_count', c_int * 3),             # intra4, intra16, skipped
        ('header_bytes', c_int * 2),            # header, mode-partition #0
        ('residual_bytes', (c_int * 4) * 3),    # DC/AC/uv x segment
        ('segment_size', c_int * 4),
        ('segment_quant', c_int * 4),
        ('segment_level', c_int * 4),
        ('alpha_data_size', c_int),
        ('layer_data_size', c_int),
        ('lossless_features', c_uint32),
        ('histogram_bits', c_int),
        ('transform_bits', c_int),
        ('cache_bits', c_int),
        ('palette_size', c_int),
        ('lossless_size', c_int),
        ('lossless_hdr_size', c_int),
        ('lossless_data_size', c_int),
        ('cross_color_transform_bits', c_int),  # padding before libwebp 1.5
        ('pad', c_uint32 * 1),
    ]


class WebPBitstreamFeatures(Structure):
    _fields_ = [
        ('width', c_int),
        ('height', c_int),
        ('has_alpha', c_int),
        ('has_animation', c_int),
        ('format', c_int),              # BitstreamFormat
        ('pad', c_uint32 * 5),
    ]


class WebPPicture(Structure):
    pass


# int (*WebPWriterFunction)(const uint8_t* data, size_t data_size, const WebPPicture* picture)
WebPWriterFunction = CFUNCTYPE(c_int, POINTER(c_uint8), c_size_t, POINTER(WebPPicture))

# int (*WebPProgressHook)(int percent, const WebPPicture* picture)
WebPProgressHook = CFUNCTYPE(c_int, c_int, POINTER(WebPPicture))

WebPPicture._fields_ = [
    # input
    ('use_argb', c_int),
    ('colorspace', c_uint32),           # WebPEncCSP, YUV420 = 0
    ('width', c_int),
    ('height', c_int),
    ('y', POINTER(c_uint8)),
    ('u', POINTER(c_uint8)),
    ('v', POINTER(c_uint8)),
    ('y_stride', c_int),
    ('uv_stride', c_int),
    ('a', POINTER(c_uint8)),
    ('a_stride', c_int),
    ('pad1', c_uint32 * 2),
    ('argb', POINTER(c_uint32)),
    ('argb_stride', c_int),             # in pixels, not bytes
    ('pad2', c_uint32 * 3),
    # output
    ('writer', WebPWriterFunction),
    ('custom_ptr', c_void_p),
    ('extra_info_type', c_int),
    ('extra_info', POINTER(c_uint8)),
    # stats and reporting
    ('stats', POINTER(WebPAuxStats)),
    ('error_code', c_uint32),           # WebPEncodingError
    ('progress_hook', WebPProgressHook),
    ('user_data', c_void_p),
    ('pad3', c_uint32 * 3),
    ('pad4', POINTER(c_uint8)),
    ('pad5', POINTER(c_uint8)),
    ('pad6', c_uint32 * 8),
    # private, owned by libwebp and released by WebPPictureFree()
    ('memory_', c_void_p),
    ('memory_argb_', c_void_p),
    ('pad7', c_void_p * 2),
]


# Published sizes by pointer width
EXPECTED_SIZES = {
    4: {
        'WebPConfig': 116,
        'WebPPicture': 172,
        'WebPAuxStats': 188,
        'WebPBitstreamFeatures': 40,
    },
    8: {
        'WebPConfig': 116,
        'WebPPicture': 256,
        'WebPAuxStats': 188,
        'WebPBitstreamFeatures': 40,
    },
}

RECORDS = {
    'WebPConfig': WebPConfig,
    'WebPPicture': WebPPicture,
    'WebPAuxStats': WebPAuxStats,
    'WebPBitstreamFeatures': WebPBitstreamFeatures,
}


def layout_mismatches(expected: dict) -> dict:
    """Return {record: (actual, expected)} for every record whose size is off."""
    bad = {}
    for name, cls in RECORDS.items():
        actual = sizeof(cls)
        if actual != expected[name]:
            bad[name] = (actual, expected[name])
    return bad
