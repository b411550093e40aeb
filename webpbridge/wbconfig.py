#!/usr/bin/env python3

import os
import ast
import configparser

from webpbridge.utils.constants import LOGS_DIR, QUALITY_MAX, QUALITY_MIN

import logging
log = logging.getLogger(__name__)


class SectionParser(object):
    true = ['true', '1', 'yes', 'on']
    false = ['false', '0', 'no', 'off']

    def __init__(self, /, **kwargs):
        for k, v in kwargs.items():
            s = '' if v is None else str(v).strip()

            if s.lower() in self.true:
                parsed_val = True
            elif s.lower() in self.false:
                parsed_val = False
            elif s.startswith('[') and s.endswith(']'):
                try:
                    parsed_val = ast.literal_eval(s)
                except (ValueError, SyntaxError):
                    parsed_val = s
            else:
                parsed_val = s

            self.__dict__[k] = parsed_val

    def __repr__(self):
        items = (f"{k}={v!r}" for k, v in self.__dict__.items())
        return "{}({})".format(type(self).__name__, ", ".join(items))


# Numeric keys that must also fall inside a range, not just parse
_RANGES = {
    ('encoder', 'default_quality'): (QUALITY_MIN, QUALITY_MAX),
    # speeds above 6 are clamped by the encoder, so they are accepted here
    ('encoder', 'default_speed'): (0, 9),
    ('encoder', 'initial_buffer_ratio'): (0.0, 16.0),
}


def _kind(default):
    """Type a default value implies: 'bool', 'int', 'float', 'str' or 'any'."""
    d = default.strip()
    if d == '':
        return 'any'
    if d.lower() in SectionParser.true + SectionParser.false:
        return 'bool'
    for kind, conv in (('int', int), ('float', float)):
        try:
            conv(d)
            return kind
        except ValueError:
            pass
    return 'str'


def _convert(value, kind):
    """Parsed value for ``kind``, or None when ``value`` doesn't fit it."""
    s = value.strip()
    if kind == 'any':
        return s
    if kind == 'bool':
        return s if s.lower() in SectionParser.true + SectionParser.false else None
    if kind in ('int', 'float'):
        try:
            return int(s) if kind == 'int' else float(s)
        except ValueError:
            return None
    return s or None


class WBConfig(object):

    _defaults = f"""
[general]
# Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
console_log_level = INFO
# File log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
file_log_level = DEBUG

[paths]
# Directory for the rotating log file and crash reports
log_dir = {LOGS_DIR}

[native]
# Explicit path to libwebp. Empty = search bundled lib/ directory, then the system.
library_path =
# Compare native record sizes against the expected ABI layout when the library loads
check_layout = True

[encoder]
# Quality used when a caller does not pass one (0-100)
default_quality = 75
# Speed/method used when a caller does not pass one (0-6)
default_speed = 6
# Multi-threaded encoding hint passed to libwebp (0 = off)
thread_level = 1
# Initial output buffer size as a fraction of the pixel count
initial_buffer_ratio = 0.25

[diagnostics]
# Log the encoder statistics block at INFO when diagnostics are requested
log_stats = True
# Install fatal signal handlers from the command line entry point
crash_handler = True
"""

    def __init__(self, conf_file=None):
        self.config = self._new_parser()
        if not conf_file:
            conf_file = os.environ.get(
                "WEBPBRIDGE_CONFIG",
                os.path.join(os.path.expanduser("~"), ".webpbridge")
            )
        self.conf_file = conf_file

        self.ready = self.load()

    @staticmethod
    def _new_parser():
        return configparser.ConfigParser(strict=False, allow_no_value=True, interpolation=None)

    def load(self):
        self.config.read_string(self._defaults)
        if os.path.isfile(self.conf_file):
            log.info(f"Config file found {self.conf_file} reading...")
            self.config.read(self.conf_file)
        else:
            log.debug("No config file found. Using defaults...")

        self.get_config()
        return True

    def _is_valid(self, sect, key, value, default):
        converted = _convert(value, _kind(default))
        if converted is None:
            return False
        limits = _RANGES.get((sect, key))
        if limits is not None:
            lo, hi = limits
            return lo <= converted <= hi
        return True

    def _sanitize_and_patch_config(self):
        """Fill in missing sections and keys, and replace invalid values with defaults."""
        defaults_cp = self._new_parser()
        defaults_cp.read_string(self._defaults)

        for sect in defaults_cp.sections():
            if not self.config.has_section(sect):
                self.config.add_section(sect)

            for key, def_val in defaults_cp.items(sect):
                def_val = def_val or ''
                cur_val = self.config.get(sect, key, fallback=None)
                if cur_val is None or cur_val.strip() == '':
                    self.config.set(sect, key, def_val)
                elif not self._is_valid(sect, key, cur_val, def_val):
                    log.warning(f"Invalid value {cur_val!r} for [{sect}] {key}, using default {def_val!r}")
                    self.config.set(sect, key, def_val)

    def get_config(self):
        # ConfigParser -> attribute namespaces
        self._sanitize_and_patch_config()
        for sect in self.config.sections():
            setattr(self, sect, SectionParser(**dict(self.config.items(sect))))

    def save(self):
        self.set_config()
        with open(self.conf_file, 'w') as h:
            self.config.write(h)
        log.info(f"Wrote config file: {self.conf_file}")

    def set_config(self):
        # attribute namespaces -> ConfigParser
        for sect in self.config.sections():
            section = getattr(self, sect)
            for k, v in section.__dict__.items():
                self.config[sect][k] = str(v)


CFG = WBConfig()
