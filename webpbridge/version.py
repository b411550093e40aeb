import os
import sys
from importlib import metadata


def _find_version_file():
    """Version stamped into a .version file by release and frozen builds."""
    here = os.path.dirname(os.path.realpath(__file__))
    base = getattr(sys, '_MEIPASS', None)
    if base:
        candidates = [os.path.join(base, 'webpbridge', '.version'), os.path.join(base, '.version')]
    else:
        candidates = [os.path.join(here, '.version')]

    for ver_file in candidates:
        try:
            with open(ver_file, 'r') as h:
                return h.read().strip() or None
        except OSError:
            continue
    return None


def _installed_version():
    try:
        return metadata.version("webpbridge")
    except metadata.PackageNotFoundError:
        return None


__version__ = _find_version_file() or _installed_version() or "0.4.0"
