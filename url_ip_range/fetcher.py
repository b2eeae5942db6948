"""
Fetcher untuk satu remote IP list dengan retry

Setiap attempt melakukan HTTP GET dan mem-parse body baris per baris.
- Transport error dan status non-2xx: di-retry sampai retry budget habis
- Baris CIDR yang tidak valid: fetch langsung gagal, tidak di-retry
"""

import codecs
import logging
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

import requests

from url_ip_range.config import DEFAULT_RETRY_DELAY, validate_url
from url_ip_range.errors import (
    CancelledError,
    FetchError,
    HTTPStatusError,
    TransportError,
)
from url_ip_range.prefix_parser import Prefix, parse_line

logger = logging.getLogger(__name__)

USER_AGENT = "url-ip-range/1.0"

# Seberapa sering attempt yang sedang berjalan mengecek stop signal dan deadline
POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class RetryPolicy:
    """
    Args:
        retries: Jumlah attempt tambahan setelah attempt pertama
        delay: Jeda tetap antar attempt (seconds)
        timeout: Deadline per attempt (seconds), None = unbounded
    """
    retries: int = 0
    delay: float = DEFAULT_RETRY_DELAY
    timeout: Optional[float] = None

    @property
    def max_attempts(self) -> int:
        return self.retries + 1


class Fetcher:
    """Ambil daftar prefix dari satu URL dengan retry policy"""

    def __init__(self, policy: RetryPolicy,
                 session: Optional[requests.Session] = None,
                 stop_event: Optional[threading.Event] = None):
        self.policy = policy
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.stop_event = stop_event or threading.Event()

    def fetch(self, url: str) -> List[Prefix]:
        """
        Fetch dan parse satu remote list

        Raises:
            FetchError: semua attempt gagal karena transport / HTTP status
            ParseError: ada baris yang bukan CIDR expression (tanpa retry)
            CancelledError: stop signal aktif
        """
        validate_url(url)

        max_attempts = self.policy.max_attempts
        last_error = None

        for attempt in range(1, max_attempts + 1):
            self._check_stopped(url)
            try:
                prefixes = self._attempt(url)
            except (TransportError, HTTPStatusError) as e:
                last_error = e
                logger.warning(f"Attempt {attempt}/{max_attempts} untuk {url} gagal: {e}")
                if attempt < max_attempts:
                    self._wait(url, self.policy.delay)
                continue

            logger.info(f"Berhasil mengambil {len(prefixes)} IP ranges dari {url}")
            return prefixes

        raise FetchError(url, max_attempts, last_error)

    def cancel(self):
        """Set stop signal dan tutup connection pool milik fetcher ini"""
        self.stop_event.set()
        if self._owns_session:
            self.session.close()

    def _attempt(self, url: str) -> List[Prefix]:
        """
        Jalankan satu request di worker thread

        Caller tidak ikut blocking di socket, jadi stop signal dan deadline
        tetap berlaku saat request masih menunggu response headers.
        """
        timeout = self.policy.timeout
        deadline = time.monotonic() + timeout if timeout else None
        outcome = {}
        active = {}
        done = threading.Event()

        def run():
            try:
                outcome['prefixes'] = self._request(url, timeout, active)
            except Exception as e:
                outcome['error'] = e
            finally:
                done.set()

        worker = threading.Thread(target=run, name=f"fetch {url}", daemon=True)
        worker.start()

        while not done.wait(POLL_INTERVAL):
            if self.stop_event.is_set():
                self._close_active(active)
                raise CancelledError(f"fetch of {url} cancelled")
            if deadline is not None and time.monotonic() > deadline:
                self._close_active(active)
                raise TransportError(url, f"timed out after {timeout}s")

        if 'error' in outcome:
            raise outcome['error']
        return outcome['prefixes']

    def _request(self, url: str, timeout: Optional[float], active: dict) -> List[Prefix]:
        logger.debug(f"GET {url} (timeout={timeout})")
        try:
            response = self.session.get(
                url,
                headers={'User-Agent': USER_AGENT},
                timeout=timeout,
                stream=True,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(url, str(e)) from e

        active['response'] = response
        with response:
            if not 200 <= response.status_code < 300:
                raise HTTPStatusError(url, response.status_code)

            response.encoding = self._usable_encoding(url, response.encoding)

            prefixes = []
            try:
                for line in response.iter_lines(decode_unicode=True):
                    self._check_stopped(url)
                    prefix = parse_line(line)
                    if prefix is not None:
                        prefixes.append(prefix)
            except requests.exceptions.RequestException as e:
                raise TransportError(url, str(e)) from e

        return prefixes

    @staticmethod
    def _usable_encoding(url: str, encoding: Optional[str]) -> str:
        # Tanpa charset, iter_lines(decode_unicode=True) menghasilkan bytes
        if not encoding:
            return 'utf-8'
        try:
            codecs.lookup(encoding)
        except LookupError:
            logger.warning(f"Charset {encoding!r} dari {url} tidak dikenal, memakai utf-8")
            return 'utf-8'
        return encoding

    @staticmethod
    def _close_active(active: dict):
        response = active.get('response')
        if response is not None:
            response.close()

    def _check_stopped(self, url: str):
        if self.stop_event.is_set():
            raise CancelledError(f"fetch of {url} cancelled")

    def _wait(self, url: str, delay: float):
        if self.stop_event.wait(delay):
            raise CancelledError(f"fetch of {url} cancelled during retry wait")
