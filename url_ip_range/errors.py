"""
Exception types untuk url_ip_range

TransportError dan HTTPStatusError boleh di-retry oleh fetcher,
ParseError menghentikan fetch tanpa retry.
"""

from typing import Optional


class IPRangeError(Exception):
    """Base class untuk semua error di package ini"""


class TransportError(IPRangeError):
    """Connection, DNS atau timeout saat request ke sumber"""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"{url}: {message}")


class HTTPStatusError(IPRangeError):
    """Response dengan status di luar 200-299"""

    def __init__(self, url: str, status_code: int):
        self.url = url
        self.status_code = status_code
        super().__init__(f"{url}: unexpected HTTP status {status_code}")


class ParseError(IPRangeError, ValueError):
    """Satu baris tidak bisa di-parse sebagai CIDR expression"""

    def __init__(self, line: str, reason: str = ""):
        self.line = line
        message = f"invalid CIDR expression {line!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CancelledError(IPRangeError):
    """Stop signal aktif saat fetch atau retry wait sedang berjalan"""


class FetchError(IPRangeError):
    """Semua attempt untuk satu URL gagal"""

    def __init__(self, url: str, attempts: int, last_error: Exception):
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"failed to fetch {url} after {attempts} attempt(s): {last_error}")


class CacheError(IPRangeError):
    """Cache file tidak bisa dibaca, di-decode atau ditulis"""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"cache {path}: {message}")


class ConfigError(IPRangeError):
    """Konfigurasi tidak valid"""


class ProvisionError(IPRangeError):
    """Initial fetch dan cache fallback sama-sama gagal"""

    def __init__(self, fetch_error: Exception, cache_error: Optional[Exception] = None):
        self.fetch_error = fetch_error
        self.cache_error = cache_error
        message = f"failed to perform initial fetch of IP ranges: {fetch_error}"
        if cache_error is not None:
            message = f"{message}; cache fallback failed: {cache_error}"
        super().__init__(message)
