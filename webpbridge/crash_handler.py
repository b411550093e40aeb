#!/usr/bin/env python3
"""
Crash reports for faults inside libwebp.

A wrong record layout or a buffer released too early shows up as a fatal
signal, not as a Python exception. The handlers here write a report with
the Python stack, the loaded native table and the picture/guard counters
before letting the signal kill the process.

Usage:
    from webpbridge.crash_handler import install_crash_handler
    install_crash_handler()
"""

import os
import sys
import signal
import logging
import traceback
from datetime import datetime

from webpbridge import wbstats
from webpbridge.utils.constants import LOGS_DIR


log = logging.getLogger(__name__)

_installed = False

_FATAL_SIGNALS = {
    'SIGSEGV': "segmentation fault",
    'SIGBUS': "bus error",
    'SIGABRT': "abort",
    'SIGFPE': "floating point exception",
    'SIGILL': "illegal instruction",
}


def _get_crash_log_path(crash_dir=None):
    crash_dir = crash_dir or LOGS_DIR
    os.makedirs(crash_dir, exist_ok=True)
    return os.path.join(crash_dir, f"crash_{datetime.now():%Y%m%d_%H%M%S}.log")


def _native_description():
    # Read the cache directly; loading the library from a crash path is not an option
    dispatch = sys.modules.get('webpbridge.wpnative.WpDispatch')
    native = getattr(dispatch, '_native', None)
    if native is None:
        return "not loaded"
    return f"{type(native).__name__} ({native.lib_path})"


def format_crash_report(crash_type, sig_info=None, frame_info=None, crash_log=None):
    stack = traceback.format_stack(frame_info) if frame_info else traceback.format_stack()
    rule = '=' * 70
    lines = [
        rule,
        "WEBPBRIDGE CRASH",
        rule,
        f"Crash Type: {crash_type}",
        f"Time: {datetime.now().isoformat()}",
        f"Python: {sys.version.split()[0]} on {sys.platform}",
        f"Signal Info: {sig_info if sig_info else 'N/A'}",
        f"Native table: {_native_description()}",
        f"Native pictures outstanding: {wbstats.outstanding_native_pictures()}",
        f"Buffer guards outstanding: {wbstats.outstanding_guards()}",
        f"Counters: {wbstats.snapshot()}",
        "",
        "Stack Trace:",
        ''.join(stack),
        f"Report: {crash_log}",
        rule,
    ]
    return '\n'.join(lines)


def _write_crash_info(crash_type, sig_info=None, frame_info=None):
    crash_log = _get_crash_log_path()
    report = format_crash_report(crash_type, sig_info, frame_info, crash_log)

    try:
        with open(crash_log, 'w') as h:
            h.write(report)
    except OSError as e:
        print(f"Failed to write crash log {crash_log}: {e}", file=sys.stderr)
    print(report, file=sys.stderr)

    # logging may be unusable at this point
    try:
        log.critical(report)
        for handler in logging.getLogger().handlers:
            handler.flush()
    except Exception as e:
        print(f"Failed to log crash: {e}", file=sys.stderr)


def _signal_handler(signum, frame):
    name = signal.Signals(signum).name
    _write_crash_info(f"{name} ({_FATAL_SIGNALS.get(name, 'fatal signal')})", sig_info=signum, frame_info=frame)

    # Default action, so a core dump is still produced
    signal.signal(signum, signal.SIG_DFL)
    os.kill(os.getpid(), signum)


def _install_signal_handlers():
    for name in _FATAL_SIGNALS:
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        try:
            signal.signal(sig, _signal_handler)
        except (OSError, RuntimeError, ValueError) as e:
            log.warning(f"Could not install handler for {name}: {e}")
    log.debug(f"Fatal signal handlers installed: {', '.join(_FATAL_SIGNALS)}")


def _install_exception_hook():
    previous = sys.excepthook

    def excepthook(exc_type, exc_value, exc_traceback):
        if not issubclass(exc_type, KeyboardInterrupt):
            text = ''.join(traceback.format_exception(exc_type, exc_value, exc_traceback))
            log.critical(f"Uncaught exception:\n{text}")
            _write_crash_info("Uncaught Python Exception", sig_info=str(exc_value))
        previous(exc_type, exc_value, exc_traceback)

    sys.excepthook = excepthook


def install_crash_handler(skip_signal_handlers: bool = False):
    """
    Install the exception hook and, on Linux and macOS, fatal signal handlers.

    Call before the native library is loaded. Safe to call more than once.
    """
    global _installed

    if _installed:
        return True

    _install_exception_hook()
    if skip_signal_handlers:
        log.info("Skipping fatal signal handlers")
    elif sys.platform.startswith('linux') or sys.platform == 'darwin':
        _install_signal_handlers()
    else:
        log.info(f"No fatal signal handlers on {sys.platform}, exception hook only")

    _installed = True
    return True
