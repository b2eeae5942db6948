"""
Konfigurasi untuk URL IP range source

Contoh config.yml:

    list:
      url:
        - https://www.cloudflare.com/ips-v4
        - https://www.cloudflare.com/ips-v6
      interval: 1.5h
      timeout: 30s
      retries: 2
      cache_file: /var/lib/url-ip-range/cloudflare.json
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlparse

import yaml

from url_ip_range.errors import ConfigError
from url_ip_range.interfaces import ConfigParser

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 3600.0  # 1 hour
DEFAULT_RETRY_DELAY = 1.0

# Go-style duration: 90s, 1.5h, 1h30m, 500ms, 2d
_DURATION_PART = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h|d)')
_DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
    'd': 86400.0,
}

_KNOWN_KEYS = {'url', 'urls', 'interval', 'timeout', 'retries', 'cache_file', 'retry_delay'}


@dataclass
class IPListConfig:
    urls: List[str] = field(default_factory=list)
    interval: float = DEFAULT_INTERVAL
    timeout: Optional[float] = None
    retries: int = 0
    cache_file: Optional[str] = None
    retry_delay: float = DEFAULT_RETRY_DELAY

    def validate(self):
        """Raises ConfigError jika ada field yang tidak valid"""
        if not self.urls:
            raise ConfigError("at least one url is required")
        for url in self.urls:
            validate_url(url)
        if self.interval <= 0:
            raise ConfigError(f"interval must be positive, got {self.interval}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if isinstance(self.retries, bool) or not isinstance(self.retries, int) or self.retries < 0:
            raise ConfigError(f"retries must be a non-negative integer, got {self.retries!r}")
        if self.retry_delay < 0:
            raise ConfigError(f"retry_delay must not be negative, got {self.retry_delay}")


def validate_url(url: str):
    """Pastikan url adalah HTTP(S) endpoint"""
    if not isinstance(url, str):
        raise ConfigError(f"url must be a string, got {url!r}")
    try:
        parsed = urlparse(url)
        # Port invalid (":99999", ":abc") baru ketahuan saat .port diakses
        parsed.port
    except ValueError as e:
        raise ConfigError(f"invalid url {url!r}: {e}") from e
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ConfigError(f"invalid url {url!r}: expected an http(s) endpoint")


def parse_duration(value) -> float:
    """
    Convert duration ke seconds

    Menerima angka (seconds) atau string seperti "30s", "1.5h", "1h30m".
    """
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 0:
            raise ConfigError(f"invalid duration {value!r}")
        return float(value)

    text = str(value).strip()
    if not text:
        raise ConfigError("empty duration")

    # Angka tanpa unit dianggap seconds
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds) or seconds < 0:
            raise ConfigError(f"invalid duration {value!r}")
        return seconds

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if not match:
            raise ConfigError(f"invalid duration {value!r}")
        number, unit = match.groups()
        total += float(number) * _DURATION_UNITS[unit]
        pos = match.end()

    return total


def _optional_duration(data: dict, key: str) -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    return parse_duration(value)


def from_dict(data: dict) -> IPListConfig:
    """Build IPListConfig dari satu block konfigurasi"""
    if not isinstance(data, dict):
        raise ConfigError(f"configuration block must be a mapping, got {type(data).__name__}")

    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise ConfigError(f"unknown option(s): {', '.join(sorted(unknown))}")

    urls = []
    for key in ('url', 'urls'):
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            urls.append(value)
        elif isinstance(value, list):
            urls.extend(value)
        else:
            raise ConfigError(f"{key} must be a string or a list of strings")

    # 0 atau kosong berarti default interval
    interval = _optional_duration(data, 'interval') or DEFAULT_INTERVAL
    # 0 berarti tanpa timeout
    timeout = _optional_duration(data, 'timeout') or None
    retry_delay = _optional_duration(data, 'retry_delay')

    cache_file = data.get('cache_file')
    if cache_file is not None and not isinstance(cache_file, str):
        raise ConfigError("cache_file must be a string")

    config = IPListConfig(
        urls=urls,
        interval=interval,
        timeout=timeout,
        retries=data.get('retries', 0),
        cache_file=cache_file or None,
        retry_delay=DEFAULT_RETRY_DELAY if retry_delay is None else retry_delay,
    )
    config.validate()
    return config


def load_config(path: str) -> IPListConfig:
    """Load konfigurasi dari file YAML"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if isinstance(data, dict) and isinstance(data.get('list'), dict):
        data = data['list']

    config = from_dict(data)
    logger.info(f"Konfigurasi berhasil dimuat dari {path} ({len(config.urls)} URL)")
    return config


class YAMLConfigParser(ConfigParser):
    """ConfigParser untuk block konfigurasi yang sudah di-load dari YAML"""

    def parse(self, block: dict) -> IPListConfig:
        if isinstance(block, dict) and isinstance(block.get('list'), dict):
            block = block['list']
        return from_dict(block)
