"""Gabungkan prefix dari semua source URL sesuai urutan konfigurasi"""

import logging
from typing import List, Sequence

from url_ip_range.fetcher import Fetcher
from url_ip_range.prefix_parser import Prefix

logger = logging.getLogger(__name__)


class Aggregator:
    def __init__(self, urls: Sequence[str], fetcher: Fetcher):
        self.urls = tuple(urls)
        self.fetcher = fetcher

    def get_prefixes(self) -> List[Prefix]:
        """
        Fetch setiap URL secara berurutan dan gabungkan hasilnya

        URL pertama yang gagal menghentikan seluruh agregasi, tidak ada
        hasil parsial.
        """
        full_prefixes = []
        for url in self.urls:
            full_prefixes.extend(self.fetcher.fetch(url))

        logger.debug(f"Total {len(full_prefixes)} IP ranges dari {len(self.urls)} sumber")
        return full_prefixes
