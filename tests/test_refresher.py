import ipaddress
import time

import pytest

from url_ip_range.cache_store import CacheStore
from url_ip_range.errors import ProvisionError
from url_ip_range.prefix_parser import parse_cidr
from url_ip_range.refresher import State, URLIPRange, new_url_ip_range


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def test_provision_with_retries(list_server, make_config):
    url = list_server.route('/ips', (500, 'fail'), (500, 'fail'), (200, '192.0.2.1/32\n'))
    source = new_url_ip_range(make_config([url], retries=2))

    source.provision()
    try:
        assert source.get_ip_ranges() == (ipaddress.ip_network('192.0.2.1/32'),)
        assert list_server.hit_count('/ips') == 3
        assert source.state is State.RUNNING
    finally:
        source.stop()


def test_provision_writes_cache(list_server, make_config):
    url = list_server.route('/ips', (200, '10.0.0.0/8\n172.16.0.0/12\n'))
    config = make_config([url])

    with URLIPRange(config) as source:
        assert source.cache.load() == list(source.get_ip_ranges())


def test_provision_fails_without_cache(list_server, make_config):
    url = list_server.route('/ips', (500, 'fail'))
    source = URLIPRange(make_config([url], retries=2))

    with pytest.raises(ProvisionError) as exc_info:
        source.provision()

    assert list_server.hit_count('/ips') == 3
    assert exc_info.value.cache_error is not None
    assert source.state is State.STOPPED


def test_provision_falls_back_to_cache(list_server, make_config):
    url = list_server.route('/ips', (500, 'fail'))
    config = make_config([url], retries=2)
    cached = [parse_cidr('198.51.100.0/24'), parse_cidr('2001:db8::/32')]
    store = CacheStore(config.cache_file)
    store.save(cached)
    before = store.path.read_bytes()
    mtime = store.path.stat().st_mtime_ns

    with URLIPRange(config) as source:
        assert list(source.get_ip_ranges()) == cached
        assert list_server.hit_count('/ips') == 3

    assert store.path.read_bytes() == before
    assert store.path.stat().st_mtime_ns == mtime


def test_corrupted_cache_is_treated_as_absent(list_server, make_config, tmp_path):
    url = list_server.route('/ips', (500, 'fail'))
    config = make_config([url])
    cache_path = tmp_path / 'cache' / 'ranges.json'
    cache_path.parent.mkdir(parents=True)
    cache_path.write_text('{"prefixes": ["bogus"], "updated_at": 0}', encoding='utf-8')

    with pytest.raises(ProvisionError):
        URLIPRange(config).provision()


def test_malformed_source_fails_provision_without_retries(list_server, make_config):
    url = list_server.route('/ips', (200, '10.0.0.0/8\nnope\n'))
    source = URLIPRange(make_config([url], retries=3))

    with pytest.raises(ProvisionError):
        source.provision()

    assert list_server.hit_count('/ips') == 1


def test_failed_refresh_keeps_ranges_and_cache(list_server, make_config):
    url = list_server.route(
        '/ips',
        (200, '10.0.0.0/8\n'),
        (200, '172.16.0.0/12\n'),
        (500, 'fail'),
    )
    config = make_config([url], interval=3600)

    with URLIPRange(config) as source:
        assert source.refresh() is True
        assert source.get_ip_ranges() == (parse_cidr('172.16.0.0/12'),)
        cache_bytes = source.cache.path.read_bytes()

        assert source.refresh() is False
        assert source.get_ip_ranges() == (parse_cidr('172.16.0.0/12'),)
        assert source.cache.path.read_bytes() == cache_bytes


def test_failed_cache_save_is_not_fatal(list_server, make_config, tmp_path):
    blocker = tmp_path / 'blocker'
    blocker.write_text('x')
    url = list_server.route('/ips', (200, '10.0.0.0/8\n'), (200, '192.168.0.0/16\n'))
    config = make_config([url], cache_file=str(blocker / 'ranges.json'))

    with URLIPRange(config) as source:
        assert source.get_ip_ranges() == (parse_cidr('10.0.0.0/8'),)
        assert source.refresh() is True
        assert source.get_ip_ranges() == (parse_cidr('192.168.0.0/16'),)


def test_background_loop_refreshes_on_interval(list_server, make_config):
    url = list_server.route('/ips', (200, '10.0.0.0/8\n'), (200, '192.168.0.0/16\n'))
    source = URLIPRange(make_config([url], interval=0.05))

    source.provision()
    try:
        assert source.get_ip_ranges() == (parse_cidr('10.0.0.0/8'),)
        assert _wait_for(lambda: source.get_ip_ranges() == (parse_cidr('192.168.0.0/16'),))
    finally:
        source.stop(timeout=5)

    assert source.state is State.STOPPED
    assert not source._thread.is_alive()


def test_no_refresh_after_stop(list_server, make_config):
    url = list_server.route('/ips', (200, '10.0.0.0/8\n'))
    source = URLIPRange(make_config([url], interval=0.05))
    source.provision()
    source.stop(timeout=5)
    hits = list_server.hit_count('/ips')

    time.sleep(0.2)

    assert list_server.hit_count('/ips') == hits


def test_multiple_sources_are_aggregated(list_server, make_config):
    v4 = list_server.route('/v4', (200, '173.245.48.0/20\n'))
    v6 = list_server.route('/v6', (200, '2400:cb00::/32\n'))

    with URLIPRange(make_config([v4, v6])) as source:
        assert [str(p) for p in source.get_ip_ranges()] == ['173.245.48.0/20', '2400:cb00::/32']


def test_contains(list_server, make_config):
    url = list_server.route('/ips', (200, '173.245.48.0/20\n2400:cb00::/32\n'))

    with URLIPRange(make_config([url])) as source:
        assert source.contains('173.245.48.1')
        assert source.contains('2400:cb00::1')
        assert not source.contains('8.8.8.8')
        with pytest.raises(ValueError):
            source.contains('not-an-ip')


def test_derived_cache_path_used_without_override(list_server, make_config, tmp_path):
    url = list_server.route('/ips', (200, '10.0.0.0/8\n'))
    config = make_config([url], cache_file=None)

    with URLIPRange(config) as source:
        assert tmp_path / 'xdg' in source.cache.path.parents
        assert source.cache.path.exists()


def test_unknown_charset_does_not_break_provisioning(list_server, make_config):
    url = list_server.route(
        '/ips',
        (200, '192.0.2.1/32\n', {'content_type': 'text/plain; charset=bogus-xyz'}),
    )
    config = make_config([url])
    CacheStore(config.cache_file).save([parse_cidr('198.51.100.0/24')])

    with URLIPRange(config) as source:
        assert source.get_ip_ranges() == (parse_cidr('192.0.2.1/32'),)
        assert source.cache.load() == [parse_cidr('192.0.2.1/32')]


def test_unexpected_refresh_error_does_not_kill_loop(list_server, make_config):
    url = list_server.route('/ips', (200, '10.0.0.0/8\n'), (200, '192.168.0.0/16\n'))
    source = URLIPRange(make_config([url], interval=0.05))
    source.provision()
    calls = []
    original = source.aggregator.get_prefixes

    def flaky_get_prefixes():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return original()

    source.aggregator.get_prefixes = flaky_get_prefixes
    try:
        assert _wait_for(lambda: len(calls) >= 2)
        assert _wait_for(lambda: source.get_ip_ranges() == (parse_cidr('192.168.0.0/16'),))
        assert source._thread.is_alive()
    finally:
        source.stop(timeout=5)


def test_stop_cancels_in_flight_refresh(list_server, make_config):
    url = list_server.route(
        '/ips',
        (200, '10.0.0.0/8\n'),
        (200, '192.168.0.0/16\n', {'delay': 30}),
    )
    source = URLIPRange(make_config([url], interval=0.05))
    source.provision()
    assert _wait_for(lambda: list_server.hit_count('/ips') >= 2)

    started = time.monotonic()
    assert source.stop(timeout=3) is True

    assert time.monotonic() - started < 3
    assert not source._thread.is_alive()
    assert source.state is State.STOPPED
    assert source.get_ip_ranges() == (parse_cidr('10.0.0.0/8'),)
