import os
import time
import threading
import collections
import psutil

import logging
log = logging.getLogger(__name__)


_local_lock = threading.RLock()
_local_stats = {}


def set_stat(stat, value):
    with _local_lock:
        _local_stats[stat] = value


def get_stat(stat):
    with _local_lock:
        return _local_stats.get(stat, 0)


def inc_stat(stat, amount=1):
    with _local_lock:
        _local_stats[stat] = _local_stats.get(stat, 0) + amount
        return _local_stats[stat]


def inc_many(items: dict):
    with _local_lock:
        for k, v in items.items():
            _local_stats[k] = _local_stats.get(k, 0) + int(v)


def snapshot():
    with _local_lock:
        return dict(_local_stats)


def reset_stats():
    with _local_lock:
        _local_stats.clear()
    ENCODE_TIMES.clear()


def update_process_memory_stat():
    """Record this process's RSS so leaks across many native calls show up in the counters.

    Writes two keys:
      - proc_mem_rss_bytes = RSS in bytes
      - proc_mem_ts = unix timestamp of the sample
    """
    try:
        rss = psutil.Process(os.getpid()).memory_info().rss
        set_stat("proc_mem_rss_bytes", int(rss))
        set_stat("proc_mem_ts", int(time.time()))
    except psutil.Error as _err:
        log.debug(f"update_process_memory_stat: {_err}")


def outstanding_native_pictures():
    """Native pictures initialized but not yet freed."""
    return get_stat('picture_init') - get_stat('picture_free')


def outstanding_guards():
    """Buffer guards acquired but not yet released."""
    return get_stat('guard_acquire') - get_stat('guard_release')


class StatTracker(object):
    """Rolling window of timings per key, with a running call count."""

    def __init__(self, maxlen=25):
        self._lock = threading.Lock()
        self.maxlen = maxlen
        self.times = {}
        self.counts = collections.Counter()

    def set(self, key, value):
        with self._lock:
            self.counts[key] += 1
            self.times.setdefault(key, collections.deque(maxlen=self.maxlen)).append(value)

    @property
    def averages(self):
        with self._lock:
            return {k: round(sum(v) / len(v), 3) for k, v in self.times.items() if v}

    def clear(self):
        with self._lock:
            self.times.clear()
            self.counts.clear()


# Rolling encode time in ms, keyed by encode mode
ENCODE_TIMES = StatTracker()
