"""
Parser untuk daftar CIDR dalam format plain text

Format:
- Satu CIDR expression per baris (10.0.0.0/8, 2001:db8::/32)
- Alamat tanpa prefix length dianggap single host (/32 atau /128)
- # memulai komentar sampai akhir baris
- Baris kosong dan baris komentar di-skip
"""

import ipaddress
import re
from typing import Iterable, List, Optional, Union

from url_ip_range.errors import ParseError

Prefix = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_PREFIX_LENGTH = re.compile(r'[0-9]+')


def parse_cidr(expression: str) -> Prefix:
    """
    Convert CIDR expression ke Prefix

    Host bits di-mask, jadi "10.1.2.3/8" menjadi 10.0.0.0/8.

    Raises:
        ParseError: jika expression bukan CIDR atau IP address yang valid
    """
    text = expression.strip()
    try:
        if '/' in text:
            address, _, length = text.partition('/')
            # Netmask notation (10.0.0.0/255.0.0.0) bukan CIDR
            if not _PREFIX_LENGTH.fullmatch(length):
                raise ParseError(expression, "prefix length must be a number")
            return ipaddress.ip_network(f"{address}/{int(length)}", strict=False)

        address = ipaddress.ip_address(text)
        return ipaddress.ip_network(f"{address}/{address.max_prefixlen}")
    except ParseError:
        raise
    except ValueError as e:
        raise ParseError(expression, str(e)) from e


def parse_line(line: str) -> Optional[Prefix]:
    """
    Parse satu baris dari remote list

    Returns:
        Prefix, atau None untuk baris kosong / komentar
    """
    # Remove comments
    idx = line.find('#')
    if idx != -1:
        line = line[:idx]

    line = line.strip()
    if not line:
        return None

    return parse_cidr(line)


def parse_lines(lines: Iterable[str]) -> List[Prefix]:
    """Parse semua baris, error pertama menghentikan parsing"""
    prefixes = []
    for line in lines:
        prefix = parse_line(line)
        if prefix is not None:
            prefixes.append(prefix)
    return prefixes
