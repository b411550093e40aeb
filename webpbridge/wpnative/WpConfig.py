"""
WpConfig.py - Build and validate WebPConfig records

A config is created, tuned and validated inside one encode call and is
never shared. Every native step goes through the dispatcher table.

Usage:
    from webpbridge.wpnative import WpConfig

    cfg = WpConfig.build(WebPPreset.DEFAULT, 80)
    WpConfig.apply_lossy_tuning(cfg, speed=4)
    if not WpConfig.validate(cfg):
        ...
"""

import logging

from webpbridge.utils.constants import QUALITY_MAX, QUALITY_MIN, SPEED_MAX, SPEED_MIN
from webpbridge.wpnative import WpDispatch
from webpbridge.wpnative.WpErrors import WpInvalidConfigError
from webpbridge.wpnative.WpStructs import WebPConfig, WebPPreset

log = logging.getLogger(__name__)


def clamp_speed(speed: int) -> int:
    """Clamp a speed/method value into [0, 6]."""
    return max(SPEED_MIN, min(SPEED_MAX, int(speed)))


def build(preset=WebPPreset.DEFAULT, quality=75, native=None) -> WebPConfig:
    """
    Initialize a config with the defaults of ``preset`` at ``quality``.

    Raises WpInvalidConfigError when the native initializer refuses the
    preset, the quality or the ABI stamp.
    """
    native = native or WpDispatch.get_native()
    preset = WebPPreset(preset)
    config = WebPConfig()
    log.debug(f"WebPConfigInit: preset={preset.name} quality={quality}")
    if not native.config_init(config, preset, quality):
        raise WpInvalidConfigError(
            f"Can't initialize config (preset={preset.name}, quality={quality})"
        )
    return config


def apply_lossy_tuning(config: WebPConfig, speed: int) -> WebPConfig:
    speed = clamp_speed(speed)
    config.method = speed
    config.pass_ = speed + 1
    config.autofilter = 1
    config.segments = 4
    config.partitions = 3
    return config


def apply_lossless_tuning(config: WebPConfig, speed: int, native=None) -> WebPConfig:
    """
    Re-initialize ``config`` for lossless output at ``speed``.

    The quality handed to the initializer is a proxy, (speed + 1) * 10; the
    lossless preset then picks method and quality for that level.
    """
    native = native or WpDispatch.get_native()
    speed = clamp_speed(speed)
    quality = (speed + 1) * 10
    if not native.config_init(config, WebPPreset.DEFAULT, quality):
        raise WpInvalidConfigError(f"Can't initialize config for lossless level {speed}")
    if not native.config_lossless_preset(config, speed):
        raise WpInvalidConfigError(f"Can't apply lossless preset level {speed}")
    config.pass_ = speed + 1
    return config


def apply_near_lossless(config: WebPConfig, quality: int, speed: int, native=None) -> WebPConfig:
    apply_lossless_tuning(config, speed, native)
    config.near_lossless = int(quality)
    return config


def apply_thread_level(config: WebPConfig, thread_level: int) -> WebPConfig:
    config.thread_level = int(thread_level)
    return config


def validate(config: WebPConfig, native=None) -> bool:
    """
    Ask the native validator whether ``config`` is usable.

    Returns False for out of range or contradictory fields; never raises for
    a bad config. The record is not modified, so repeated calls agree.
    """
    native = native or WpDispatch.get_native()
    ok = bool(native.validate_config(config))
    if not ok:
        log.debug(f"WebPValidateConfig rejected {config!r}")
    return ok


def validate_or_raise(config: WebPConfig, native=None):
    if not validate(config, native):
        raise WpInvalidConfigError(f"Bad config parameters: {config!r}")


def snapshot(config: WebPConfig) -> WebPConfig:
    """Independent copy of ``config``, frozen for the duration of one encode."""
    return WebPConfig.from_buffer_copy(config)


def quality_in_range(quality) -> bool:
    return QUALITY_MIN <= quality <= QUALITY_MAX
