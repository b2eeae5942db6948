"""
URL IP Range source - provisioning dan background refresh

Lifecycle:
1. provision(): fetch semua URL sekali. Gagal -> fallback ke cache di disk.
   Fetch dan cache sama-sama gagal -> ProvisionError.
2. Background thread refresh setiap interval. Refresh gagal hanya di-log,
   ranges lama tetap dipakai.
3. stop(): stop signal di-set, fetch yang sedang berjalan dibatalkan,
   thread keluar pada wake-up berikutnya.
"""

import ipaddress
import logging
import threading
import time
from enum import Enum
from typing import Optional, Tuple

import requests

from url_ip_range.aggregator import Aggregator
from url_ip_range.cache_store import CacheStore
from url_ip_range.config import IPListConfig
from url_ip_range.errors import (
    CacheError,
    CancelledError,
    IPRangeError,
    ProvisionError,
)
from url_ip_range.fetcher import Fetcher, RetryPolicy
from url_ip_range.interfaces import IPRangeSource, Lifecycle
from url_ip_range.prefix_parser import Prefix
from url_ip_range.range_store import RangeStore

logger = logging.getLogger(__name__)


class State(Enum):
    NEW = "new"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


class URLIPRange(IPRangeSource, Lifecycle):
    """IP ranges (CIDR) dari satu atau lebih URL, di-refresh secara periodik"""

    def __init__(self, config: IPListConfig,
                 stop_event: Optional[threading.Event] = None,
                 session: Optional[requests.Session] = None):
        """
        Args:
            config: Konfigurasi yang sudah divalidasi
            stop_event: Lifecycle stop signal; set() menghentikan refresh loop
                dan fetch yang sedang berjalan
            session: requests.Session yang dipakai untuk semua fetch
        """
        config.validate()
        self.config = config
        self.stop_event = stop_event or threading.Event()

        policy = RetryPolicy(
            retries=config.retries,
            delay=config.retry_delay,
            timeout=config.timeout,
        )
        self.fetcher = Fetcher(policy, session=session, stop_event=self.stop_event)
        self.aggregator = Aggregator(config.urls, self.fetcher)
        self.cache = CacheStore.for_urls(config.urls, config.cache_file)
        self.ranges = RangeStore()

        self.state = State.NEW
        self._thread: Optional[threading.Thread] = None

    def provision(self):
        """
        Initial fetch, fallback ke cache, lalu start refresh loop

        Raises:
            ProvisionError: fetch dan cache fallback sama-sama gagal
        """
        self.state = State.STARTING

        try:
            prefixes = self.aggregator.get_prefixes()
        except IPRangeError as fetch_error:
            logger.warning(f"Initial fetch gagal, mencoba cache {self.cache.path}: {fetch_error}")
            try:
                record = self.cache.load_record()
            except CacheError as cache_error:
                self.state = State.STOPPED
                raise ProvisionError(fetch_error, cache_error) from fetch_error

            self.ranges.set(record.prefixes)
            logger.warning(
                f"Degraded start: memakai {len(record.prefixes)} IP ranges dari cache "
                f"(updated_at {record.updated_at.isoformat()})"
            )
        else:
            self.ranges.set(prefixes)
            self._save_cache(prefixes)
            logger.info(f"Provisioned {len(prefixes)} IP ranges dari {len(self.config.urls)} URL")

        self._start_refresh_loop()
        self.state = State.RUNNING

    def refresh(self) -> bool:
        """
        Satu refresh cycle

        Returns:
            True jika ranges diperbarui, False jika gagal (ranges lama tetap)
        """
        try:
            prefixes = self.aggregator.get_prefixes()
        except CancelledError:
            logger.info("Refresh dibatalkan karena stop signal")
            return False
        except IPRangeError as e:
            logger.error(f"Failed to refresh IP ranges from URLs {list(self.config.urls)}: {e}")
            return False

        self.ranges.set(prefixes)
        self._save_cache(prefixes)
        logger.info(f"Refreshed {len(prefixes)} IP ranges")
        return True

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Set stop signal, batalkan fetch yang sedang berjalan, tunggu refresh thread

        Returns:
            True jika refresh thread sudah berhenti dalam timeout
        """
        self.fetcher.cancel()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Refresh thread belum berhenti setelah {timeout}s")
                return False
        self.state = State.STOPPED
        return True

    def get_ip_ranges(self, request=None) -> Tuple[Prefix, ...]:
        return self.ranges.get()

    def contains(self, ip) -> bool:
        """Check apakah IP address ada di salah satu range saat ini"""
        address = ipaddress.ip_address(ip)
        return any(address in prefix for prefix in self.get_ip_ranges())

    @property
    def interval(self) -> float:
        return self.config.interval

    def _save_cache(self, prefixes):
        try:
            self.cache.save(prefixes)
        except CacheError as e:
            logger.error(f"Gagal menyimpan cache: {e}")

    def _start_refresh_loop(self):
        self._thread = threading.Thread(
            target=self._refresh_loop,
            name="url-ip-range-refresh",
            daemon=True,
        )
        self._thread.start()

    def _refresh_loop(self):
        interval = self.interval
        # First refresh satu interval setelah provisioning
        next_tick = time.monotonic() + interval

        while not self.stop_event.wait(max(0.0, next_tick - time.monotonic())):
            try:
                self.refresh()
            except Exception:
                # Cycle berikutnya tetap jalan, ranges lama tetap dipakai
                logger.exception("Unexpected error saat refresh IP ranges")

            # Tick yang terlewat karena refresh lambat di-skip
            now = time.monotonic()
            next_tick += interval
            if next_tick <= now:
                missed = int((now - next_tick) // interval) + 1
                next_tick += missed * interval

        logger.debug("Refresh loop stopped")

    def __enter__(self):
        self.provision()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()


def new_url_ip_range(config: IPListConfig,
                     stop_event: Optional[threading.Event] = None,
                     session: Optional[requests.Session] = None) -> URLIPRange:
    """Build URLIPRange dari typed config (belum di-provision)"""
    return URLIPRange(config, stop_event=stop_event, session=session)
