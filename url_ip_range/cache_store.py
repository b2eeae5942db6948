"""
Cache Store - last-known-good IP ranges di disk

Features:
- Lokasi cache deterministik dari hash daftar URL (atau override path)
- Write ke temporary file lalu rename, jadi cache lama tidak pernah korup
- Load memvalidasi ulang setiap prefix; satu entry invalid = cache dianggap tidak ada

Format file:
    {"prefixes": ["10.0.0.0/8", ...], "updated_at": "2024-01-01T00:00:00+00:00"}
"""

import hashlib
import json
import logging
import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence

from url_ip_range.errors import CacheError, ParseError
from url_ip_range.prefix_parser import Prefix, parse_cidr

logger = logging.getLogger(__name__)

APP_DIR_NAME = "url_ip_range"


class CacheRecord(NamedTuple):
    prefixes: List[Prefix]
    updated_at: datetime


def app_data_dir() -> Optional[Path]:
    """
    Application data directory untuk platform ini

    Returns None jika home directory tidak bisa ditentukan.
    """
    xdg = os.getenv('XDG_DATA_HOME')
    if xdg:
        return Path(xdg) / APP_DIR_NAME

    if sys.platform == 'win32':
        appdata = os.getenv('AppData')
        if appdata:
            return Path(appdata) / APP_DIR_NAME
        return None

    try:
        home = Path.home()
    except (KeyError, RuntimeError):
        return None

    if sys.platform == 'darwin':
        return home / 'Library' / 'Application Support' / APP_DIR_NAME
    return home / '.local' / 'share' / APP_DIR_NAME


def cache_key(urls: Sequence[str]) -> str:
    """SHA-256 dari daftar URL (urutan berpengaruh)"""
    joined = '\n'.join(urls)
    return hashlib.sha256(joined.encode('utf-8')).hexdigest()


def resolve_cache_path(urls: Sequence[str], override: Optional[str] = None) -> Path:
    """Override path jika ada, selain itu path diturunkan dari hash URL"""
    if override:
        return Path(override)

    base = app_data_dir()
    if base is None:
        base = Path.cwd()
    return base / 'ip_lists' / f"{cache_key(urls)}.json"


class CacheStore:
    """Persist dan restore prefix set ke satu JSON file"""

    def __init__(self, path):
        self.path = Path(path)

    @classmethod
    def for_urls(cls, urls: Sequence[str], override: Optional[str] = None) -> 'CacheStore':
        return cls(resolve_cache_path(urls, override))

    def load_record(self) -> CacheRecord:
        """
        Load cache beserta timestamp

        Raises:
            CacheError: file tidak ada, tidak bisa di-decode, atau ada prefix invalid
        """
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except OSError as e:
            raise CacheError(self.path, f"cannot read: {e}") from e
        except ValueError as e:
            raise CacheError(self.path, f"cannot decode: {e}") from e

        if not isinstance(data, dict):
            raise CacheError(self.path, "expected a JSON object")

        raw_prefixes = data.get('prefixes')
        if not isinstance(raw_prefixes, list):
            raise CacheError(self.path, "'prefixes' must be a list")

        prefixes = []
        for entry in raw_prefixes:
            if not isinstance(entry, str):
                raise CacheError(self.path, f"invalid prefix entry {entry!r}")
            try:
                prefixes.append(parse_cidr(entry))
            except ParseError as e:
                raise CacheError(self.path, str(e)) from e

        updated_at = self._parse_timestamp(data.get('updated_at'))

        logger.info(f"Loaded {len(prefixes)} IP ranges from cache {self.path}")
        return CacheRecord(prefixes, updated_at)

    def load(self) -> List[Prefix]:
        return self.load_record().prefixes

    def save(self, prefixes: Sequence[Prefix], now: Optional[datetime] = None):
        """
        Simpan prefix set secara atomic (temp file + rename)

        Raises:
            CacheError: directory atau file tidak bisa ditulis
        """
        now = now or datetime.now(timezone.utc)
        payload = {
            'prefixes': [str(prefix) for prefix in prefixes],
            'updated_at': now.isoformat(),
        }

        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)

            with tempfile.NamedTemporaryFile(
                'w',
                encoding='utf-8',
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix='.tmp',
                delete=False,
            ) as f:
                tmp_path = f.name
                json.dump(payload, f, indent=2)
                f.write('\n')
                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise CacheError(self.path, f"cannot write: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.debug(f"Could not remove temporary file {tmp_path}")

        logger.info(f"Saved {len(payload['prefixes'])} IP ranges to cache {self.path}")

    def _parse_timestamp(self, value) -> datetime:
        if isinstance(value, bool):
            raise CacheError(self.path, f"invalid updated_at {value!r}")
        if isinstance(value, (int, float)):
            try:
                return datetime.fromtimestamp(value, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as e:
                raise CacheError(self.path, f"invalid updated_at {value!r}") from e
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value)
            except ValueError as e:
                raise CacheError(self.path, f"invalid updated_at {value!r}") from e
        raise CacheError(self.path, "missing 'updated_at'")
