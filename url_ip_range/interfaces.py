"""
Role interfaces

Konfigurasi, query ranges dan lifecycle dipisah supaya consumer hanya
bergantung pada role yang dipakai.
"""

from abc import ABC, abstractmethod
from typing import Sequence

from url_ip_range.prefix_parser import Prefix


class ConfigParser(ABC):
    @abstractmethod
    def parse(self, block: dict):
        """Convert block konfigurasi mentah ke typed config"""


class IPRangeSource(ABC):
    @abstractmethod
    def get_ip_ranges(self, request=None) -> Sequence[Prefix]:
        """Snapshot prefix set saat ini, read-only"""


class Lifecycle(ABC):
    @abstractmethod
    def provision(self):
        """Siapkan state awal dan mulai background work"""

    @abstractmethod
    def stop(self):
        """Hentikan background work"""
