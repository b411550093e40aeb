"""
WpDistortion.py - PSNR / SSIM / LSIM between two bitmaps

Both bitmaps go through the regular picture lifecycle (ARGB import) and
both pictures are freed whatever happens. Dimension mismatch is rejected
before the native library is touched.
"""

from contextlib import ExitStack
from ctypes import c_float
import logging
from typing import NamedTuple

from webpbridge.wpimage.WpBitmap import LockMode
from webpbridge.wpnative import WpDispatch
from webpbridge.wpnative.WpErrors import WebPException, WpPreconditionError
from webpbridge.wpnative.WpPicture import NativePicture
from webpbridge.wpnative.WpStructs import DistortionMetric

log = logging.getLogger(__name__)


class DistortionResult(NamedTuple):
    channel0: float
    channel1: float
    channel2: float
    alpha: float
    aggregate: float


def _import(stack, guard, native):
    pic = stack.enter_context(NativePicture(native))
    pic.init(guard.width, guard.height, use_argb=True)
    pic.import_pixels(guard)
    return pic


def measure(source, reference, metric=DistortionMetric.PSNR, native=None) -> DistortionResult:
    """
    Compare ``source`` against ``reference``. CPU intensive.

    Raises WpPreconditionError when the two sizes differ.
    """
    if source.size != reference.size:
        raise WpPreconditionError(
            f"Source {source.width}x{source.height} and reference "
            f"{reference.width}x{reference.height} don't have the same dimension"
        )
    metric = DistortionMetric(metric)
    native = native or WpDispatch.get_native()

    result = (c_float * 5)()
    with ExitStack() as stack:
        src_guard = stack.enter_context(source.lock_bits(mode=LockMode.READ_ONLY))
        if reference is source:
            ref_guard = src_guard
        else:
            ref_guard = stack.enter_context(reference.lock_bits(mode=LockMode.READ_ONLY))
        src_pic = _import(stack, src_guard, native)
        ref_pic = _import(stack, ref_guard, native)
        log.debug(f"WebPPictureDistortion: {metric.name} {source.width}x{source.height}")
        if not native.picture_distortion(src_pic.picture, ref_pic.picture, metric, result):
            raise WebPException(f"Can't measure {metric.name} distortion")

    return DistortionResult(*(float(v) for v in result))
