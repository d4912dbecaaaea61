import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import httpx
import pytest
import structlog

from weblink.opener import URLOpener, set_default_opener


# Route structlog through stdlib logging so nothing lands on captured stdout.
structlog.configure(
    processors=[
        structlog.stdlib.render_to_log_kwargs,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=False,
)


@pytest.fixture
def make_opener():
    """Build URLOpeners that answer through a handler or a ready-made transport."""
    openers = []

    def factory(handler, **settings):
        transport = handler if isinstance(handler, httpx.BaseTransport) else httpx.MockTransport(handler)
        opener = URLOpener(transport=transport, settings=settings)
        openers.append(opener)
        return opener

    yield factory

    for opener in openers:
        opener.close()


@pytest.fixture
def default_opener(make_opener):
    """Install a mock-backed opener as the process-wide default."""
    installed = []

    def install(handler, **settings):
        opener = make_opener(handler, **settings)
        installed.append(set_default_opener(opener))
        return opener

    yield install

    if installed:
        set_default_opener(installed[0])


class _LocalHandler(BaseHTTPRequestHandler):
    """GET /hello, POST /echo, and POST /moved which 307s to /echo."""

    def _body(self):
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length)

    def _reply(self, status, body=b"", headers=None):
        self.send_response(status)
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self):
        if self.path == "/hello":
            self._reply(200, b"hello from server", {"Content-Type": "text/plain; charset=utf-8"})
        else:
            self._reply(404)

    def do_POST(self):
        body = self._body()
        if self.path == "/echo":
            self.server.posts.append(body)
            self._reply(200, body)
        elif self.path == "/moved":
            self.server.posts.append(body)
            self._reply(307, headers={"Location": "/echo"})
        else:
            self._reply(404)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def local_server(monkeypatch):
    """A real HTTP server on 127.0.0.1; yields its base address."""
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)

    server = ThreadingHTTPServer(("127.0.0.1", 0), _LocalHandler)
    server.posts = []
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield server, f"http://127.0.0.1:{server.server_address[1]}"

    server.shutdown()
    server.server_close()
    thread.join()
