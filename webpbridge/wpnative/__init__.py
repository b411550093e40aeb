"""
wpnative - ctypes bridge to libwebp

- WpDispatch: width-specific native tables, library loading
- WpConfig: WebPConfig builder and validator
- WpPicture: WebPPicture lifecycle and encoder statistics
- WpWriter: streaming output sink
- WpFeatures: header-only bitstream probe
- WpDistortion: PSNR / SSIM / LSIM

Usage:
    from webpbridge.wpnative import WpFeatures

    features = WpFeatures.probe(data)
"""

import logging
import os
import sys

log = logging.getLogger(__name__)

# On Windows, let the loader find libwebp's sibling DLLs (libsharpyuv)
if sys.platform == 'win32':
    _lib_dir = None

    if getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS'):
        _lib_dir = os.path.join(sys._MEIPASS, 'webpbridge', 'lib', 'windows')

    if _lib_dir is None or not os.path.isdir(_lib_dir):
        _lib_dir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'lib', 'windows')

    if os.path.isdir(_lib_dir):
        os.environ['PATH'] = _lib_dir + os.pathsep + os.environ.get('PATH', '')
        if hasattr(os, 'add_dll_directory'):
            os.add_dll_directory(_lib_dir)

# Submodules are imported on first access
_module_cache = {}

_SUBMODULES = ('WpDispatch', 'WpConfig', 'WpPicture', 'WpWriter', 'WpFeatures', 'WpDistortion')


def _get_module(name):
    if name not in _module_cache:
        import importlib
        _module_cache[name] = importlib.import_module(f'.{name}', __name__)
    return _module_cache[name]


def __getattr__(name):
    if name in _SUBMODULES:
        return _get_module(name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def is_available() -> bool:
    """Check if libwebp can be loaded for this process."""
    return _get_module('WpDispatch').is_available()


__all__ = list(_SUBMODULES) + ['is_available']
