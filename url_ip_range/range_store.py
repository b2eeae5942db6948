"""
Range Store - prefix set yang sedang dipublikasikan

Prefix set disimpan sebagai tuple dan selalu diganti utuh, tidak pernah
dimodifikasi di tempat. Akses dilindungi reader/writer lock.
"""

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Optional, Tuple

from url_ip_range.prefix_parser import Prefix


class ReadWriteLock:
    """
    Banyak reader bersamaan, atau satu writer

    Writer yang menunggu memblokir reader baru, jadi writer tidak starve.
    Read lock tidak reentrant.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class RangeStore:
    def __init__(self):
        self._lock = ReadWriteLock()
        self._ranges: Tuple[Prefix, ...] = ()
        self._updated_at: Optional[datetime] = None

    def get(self) -> Tuple[Prefix, ...]:
        with self._lock.read_locked():
            return self._ranges

    def set(self, prefixes: Iterable[Prefix]):
        # Build di luar lock, swap reference di dalam lock
        ranges = tuple(prefixes)
        now = datetime.now(timezone.utc)
        with self._lock.write_locked():
            self._ranges = ranges
            self._updated_at = now

    @property
    def updated_at(self) -> Optional[datetime]:
        with self._lock.read_locked():
            return self._updated_at

    def __len__(self):
        return len(self.get())
