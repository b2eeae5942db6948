import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from url_ip_range.config import IPListConfig

_PROXY_VARS = ('HTTP_PROXY', 'HTTPS_PROXY', 'ALL_PROXY', 'http_proxy', 'https_proxy', 'all_proxy')


class ListServer:
    """
    Local HTTP server yang menyajikan remote list

    Setiap path punya daftar response (status, body) atau
    (status, body, options); response terakhir diulang untuk request
    berikutnya. Options:
    - content_type: header Content-Type (default text/plain; charset=utf-8)
    - delay: tunggu sekian detik sebelum mengirim headers
    """

    def __init__(self):
        self.routes = {}
        self.hits = {}
        self._lock = threading.Lock()
        self._released = threading.Event()
        self._server = ThreadingHTTPServer(('127.0.0.1', 0), self._make_handler())
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    def route(self, path, *responses):
        with self._lock:
            self.routes[path] = list(responses)
            self.hits[path] = 0
        return self.url(path)

    def url(self, path):
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}{path}"

    def hit_count(self, path):
        with self._lock:
            return self.hits.get(path, 0)

    def _next_response(self, path):
        with self._lock:
            if path not in self.routes:
                return 404, 'not found', {}
            self.hits[path] += 1
            responses = self.routes[path]
            response = responses[min(self.hits[path], len(responses)) - 1]
        if len(response) == 2:
            return response[0], response[1], {}
        return response

    def _make_handler(self):
        server = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                status, body, options = server._next_response(self.path)
                delay = options.get('delay')
                if delay:
                    server._released.wait(delay)

                data = body.encode('utf-8')
                try:
                    self.send_response(status)
                    self.send_header('Content-Type', options.get('content_type', 'text/plain; charset=utf-8'))
                    self.send_header('Content-Length', str(len(data)))
                    self.end_headers()
                    self.wfile.write(data)
                except (BrokenPipeError, ConnectionResetError):
                    # Client sudah menutup connection (timeout / cancel)
                    pass

            def log_message(self, format, *args):
                pass

        return Handler

    def start(self):
        self._thread.start()

    def close(self):
        self._released.set()
        self._server.shutdown()
        self._server.server_close()
        self._thread.join()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Jangan pakai proxy dan jangan tulis ke home directory"""
    for name in _PROXY_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('XDG_DATA_HOME', str(tmp_path / 'xdg'))


@pytest.fixture
def list_server():
    server = ListServer()
    server.start()
    yield server
    server.close()


@pytest.fixture
def make_config(tmp_path):
    def _make(urls, **kwargs):
        kwargs.setdefault('retry_delay', 0)
        kwargs.setdefault('cache_file', str(tmp_path / 'cache' / 'ranges.json'))
        return IPListConfig(urls=list(urls), **kwargs)

    return _make
