#!/usr/bin/env python3
"""
URL IP Range - command line

Usage:
    url-ip-range -c config.yml                 # provision lalu refresh sampai Ctrl-C
    url-ip-range -c config.yml --once          # print ranges lalu keluar
    url-ip-range -c config.yml --check 1.2.3.4 # cek apakah IP ada di ranges
"""

import argparse
import logging
import signal
import sys
import threading

from url_ip_range.config import load_config
from url_ip_range.errors import ConfigError, ProvisionError
from url_ip_range.refresher import new_url_ip_range

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Maintain IP ranges (CIDR) fetched from remote lists'
    )
    parser.add_argument(
        '-c', '--config',
        default='config.yml',
        help='Path ke file konfigurasi YAML (default: config.yml)'
    )
    parser.add_argument(
        '--once',
        action='store_true',
        help='Print ranges setelah provisioning lalu keluar'
    )
    parser.add_argument(
        '--check',
        nargs='+',
        metavar='IP',
        help='Cek apakah IP address ada di ranges'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable debug logging'
    )
    return parser


def check_addresses(source, addresses) -> int:
    exit_code = 0
    for address in addresses:
        try:
            listed = source.contains(address)
        except ValueError:
            print(f"{address}: invalid IP address")
            exit_code = 1
            continue

        if listed:
            print(f"{address}: LISTED")
        else:
            print(f"{address}: NOT LISTED")
            exit_code = 1
    return exit_code


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Gagal memuat konfigurasi: {e}")
        return 2

    stop_event = threading.Event()
    source = new_url_ip_range(config, stop_event=stop_event)

    try:
        source.provision()
    except ProvisionError as e:
        logger.error(str(e))
        return 1

    try:
        if args.check:
            return check_addresses(source, args.check)

        if args.once:
            for prefix in source.get_ip_ranges():
                print(prefix)
            return 0

        def _handle_signal(signum, frame):
            logger.info(f"Signal {signum} diterima, stopping...")
            stop_event.set()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)

        logger.info(f"Refreshing setiap {source.interval:g}s, tekan Ctrl-C untuk berhenti")
        while not stop_event.wait(1.0):
            pass
        return 0
    finally:
        source.stop()


if __name__ == "__main__":
    sys.exit(main())
