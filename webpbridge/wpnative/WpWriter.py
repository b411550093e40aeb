"""
WpWriter.py - Streaming output capture for WebPEncode()

libwebp hands compressed bytes to ``picture.writer`` in chunks. There is
one writer function for the whole process; the sink for a given encode is
found through the token stored in ``picture.custom_ptr``, so concurrent
encodes never see each other's output.

Usage:
    acc = OutputAccumulator(initial_size)
    with registered(acc) as token:
        picture.writer = memory_writer
        picture.custom_ptr = token
        native.encode(config, picture)
    data = acc.getvalue()
"""

from contextlib import contextmanager
from ctypes import string_at
import itertools
import logging
import threading

from webpbridge import wbstats
from webpbridge.wpnative.WpStructs import WebPWriterFunction

log = logging.getLogger(__name__)


class OutputSink(object):
    """Receives compressed chunks. Return False to abort the encode."""

    def write(self, chunk: bytes) -> bool:
        raise NotImplementedError


class OutputAccumulator(OutputSink):
    """Growable byte buffer plus a running length."""

    def __init__(self, initial_size=0):
        self._buf = bytearray(max(0, int(initial_size)))
        self.length = 0
        self.chunks = 0
        self.grows = 0

    @property
    def capacity(self):
        return len(self._buf)

    def write(self, chunk: bytes) -> bool:
        end = self.length + len(chunk)
        if end > len(self._buf):
            # Double, or jump straight to what is needed
            self._buf.extend(bytes(max(end, 2 * len(self._buf)) - len(self._buf)))
            self.grows += 1
        self._buf[self.length:end] = chunk
        self.length = end
        self.chunks += 1
        return True

    def getvalue(self) -> bytes:
        return bytes(self._buf[:self.length])

    def __len__(self):
        return self.length


# token -> sink, for encodes currently in flight
_sinks = {}
_sinks_lock = threading.Lock()
_tokens = itertools.count(1)


def register(sink: OutputSink) -> int:
    with _sinks_lock:
        token = next(_tokens)
        _sinks[token] = sink
    return token


def unregister(token: int):
    with _sinks_lock:
        _sinks.pop(token, None)


def lookup(token):
    with _sinks_lock:
        return _sinks.get(token)


def active_count() -> int:
    with _sinks_lock:
        return len(_sinks)


@contextmanager
def registered(sink: OutputSink):
    token = register(sink)
    try:
        yield token
    finally:
        unregister(token)


def _write(data, data_size, picture):
    # Exceptions must not propagate into native code
    try:
        token = picture.contents.custom_ptr if picture else None
        sink = lookup(token)
        if sink is None:
            log.error(f"Writer called with unknown sink token {token}")
            return 0
        if data_size == 0:
            return 1
        if not sink.write(string_at(data, data_size)):
            return 0
        wbstats.inc_stat('sink_bytes', data_size)
        return 1
    except Exception:
        log.exception("Output sink failed, aborting encode")
        return 0


# Single native-callable writer; kept referenced for the life of the process
memory_writer = WebPWriterFunction(_write)
