"""
Opens readable streams against URLs over HTTP.

The opener builds the request from a URL value, sends it through a
synchronous httpx client and hands back an InputStream positioned at the
start of the response body. POST bodies are sent in chunks so that a
progress callback can watch the upload and stop it.
"""

import threading
import time
from typing import Callable, Dict, Iterator, Optional

import httpx
import structlog
from lxml import etree

from .config import config
from .errors import (
    ConnectionFailure,
    HTTPStatusFailure,
    ParseFailure,
    UserCancelled,
    WeblinkError,
)
from .request import PreparedRequest, build_request
from .url import URL

logger = structlog.get_logger(__name__)

# (bytes_sent, total_bytes) -> keep going?
ProgressCallback = Callable[[int, int], bool]


class InputStream:
    """A readable response body. Close it, or use it as a context manager."""

    def __init__(self, response: httpx.Response, url: str, chunk_size: int = 8192,
                 fetch_time: float = 0.0):
        self._response = response
        self._chunks = response.iter_bytes(chunk_size=chunk_size)
        self._buffer = bytearray()
        self._exhausted = False
        self._closed = False
        self.url = url
        self.fetch_time = fetch_time

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._response.headers)

    @property
    def content_type(self) -> str:
        return self._response.headers.get('content-type', '').lower()

    @property
    def encoding(self) -> Optional[str]:
        """Charset named by the Content-Type header, if any."""
        return self._response.charset_encoding

    @property
    def final_url(self) -> str:
        return str(self._response.url)

    @property
    def total_length(self) -> Optional[int]:
        content_length = self._response.headers.get('content-length')
        if content_length is None:
            return None
        try:
            return int(content_length)
        except ValueError:
            return None

    @property
    def closed(self) -> bool:
        return self._closed

    def _fill(self, size: int) -> None:
        while not self._exhausted and (size < 0 or len(self._buffer) < size):
            try:
                chunk = next(self._chunks)
            except StopIteration:
                self._exhausted = True
                break
            except (httpx.RequestError, httpx.StreamError) as e:
                raise ConnectionFailure(f"Error reading response: {e}", url=self.url) from e
            self._buffer += chunk

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything that is left when negative.

        Returns b"" once the body is exhausted.
        """
        if self._closed:
            return b""
        self._fill(size)
        if size < 0 or size >= len(self._buffer):
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
        return data

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(8192)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        self._closed = True
        self._response.close()

    def __enter__(self) -> "InputStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<InputStream {self.status_code} {self.url}>"


class ProgressBody:
    """A POST body handed over in chunks, asking ``callback`` before each one.

    Every iteration starts again from the first byte, so the body can be
    resent when a 307/308 redirect repeats the POST.
    """

    def __init__(self, body: bytes, chunk_size: int, callback: ProgressCallback, url: str):
        self.body = body
        self.chunk_size = chunk_size
        self.callback = callback
        self.url = url

    def __iter__(self) -> Iterator[bytes]:
        total = len(self.body)
        sent = 0
        while sent < total:
            if not self.callback(sent, total):
                raise UserCancelled(sent, total, url=self.url)
            chunk = self.body[sent:sent + self.chunk_size]
            yield chunk
            sent += len(chunk)

        if not self.callback(sent, total):
            raise UserCancelled(sent, total, url=self.url)


class URLOpener:
    """Sends requests built from URL values and returns the response streams."""

    def __init__(self, transport: httpx.BaseTransport = None, settings: dict = None):
        """Initialize the opener from the ``opener`` config section.

        Args:
            transport: httpx transport to send through; the default network
                transport when None.
            settings: Overrides for the ``opener`` config section.
        """
        settings = {**config.opener, **(settings or {})}
        self.user_agent = str(settings.get('user_agent', 'weblink/1.0'))
        self.timeout = float(settings.get('timeout', 30.0))
        self.follow_redirects = bool(settings.get('follow_redirects', True))
        self.max_redirects = int(settings.get('max_redirects', 5))
        self.chunk_size = int(settings.get('chunk_size', 8192))

        self._client = httpx.Client(
            transport=transport,
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=self.follow_redirects,
            max_redirects=self.max_redirects,
            headers={'User-Agent': self.user_agent},
        )

    def resolve_timeout(self, timeout_ms: int) -> httpx.Timeout:
        """0 means the configured default, negative means wait forever."""
        if timeout_ms == 0:
            return httpx.Timeout(self.timeout)
        if timeout_ms < 0:
            return httpx.Timeout(None)
        return httpx.Timeout(timeout_ms / 1000.0)

    def _to_httpx(self, prepared: PreparedRequest, progress_callback: Optional[ProgressCallback],
                  timeout_ms: int) -> httpx.Request:
        content = None
        if prepared.method == "POST":
            if progress_callback is not None:
                content = ProgressBody(prepared.body, self.chunk_size, progress_callback,
                                      prepared.url)
            else:
                content = prepared.body

        return self._client.build_request(
            prepared.method,
            prepared.url,
            headers=prepared.headers,
            content=content,
            timeout=self.resolve_timeout(timeout_ms),
        )

    def open_stream(self, url: URL, use_post_command: bool = False,
                    progress_callback: Optional[ProgressCallback] = None,
                    extra_headers: str = "", timeout_ms: int = 0) -> InputStream:
        """Open a stream that reads the resource at ``url``.

        Args:
            url: What to fetch.
            use_post_command: Send the parameters as a POST body instead of
                appending them to the address.
            progress_callback: Called as (bytes_sent, total_bytes) while a POST
                body is sent; returning False aborts the transfer.
            extra_headers: Newline-separated header lines appended to the request.
            timeout_ms: 0 for the configured default, negative for no timeout,
                otherwise milliseconds.

        Raises:
            ConnectionFailure: The connection failed, timed out or got an error status.
            UserCancelled: The progress callback returned False.
            UploadFileUnavailable: An upload file could not be read.
        """
        if not isinstance(url, URL):
            url = URL(url)

        prepared = build_request(url, use_post_command, extra_headers)
        target = prepared.url
        try:
            request = self._to_httpx(prepared, progress_callback, timeout_ms)
        except httpx.InvalidURL as e:
            raise ConnectionFailure(f"Invalid URL: {e}", url=target) from e

        logger.debug("opening_stream",
                     url=target,
                     method=prepared.method,
                     encoding=prepared.encoding.value,
                     body_size=prepared.content_length)

        start_time = time.time()
        try:
            response = self._client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise ConnectionFailure(f"Timeout: {e}", url=target) from e
        except httpx.TooManyRedirects as e:
            raise ConnectionFailure(f"Too many redirects: {e}", url=target) from e
        except httpx.RequestError as e:
            raise ConnectionFailure(f"Connection error: {e}", url=target) from e
        except httpx.StreamError as e:
            raise ConnectionFailure(f"Request body could not be resent: {e}", url=target) from e
        except httpx.InvalidURL as e:
            raise ConnectionFailure(f"Invalid URL: {e}", url=target) from e

        if response.status_code >= 400:
            response.close()
            raise HTTPStatusFailure(response.status_code, url=target)

        return InputStream(response, target, chunk_size=self.chunk_size,
                           fetch_time=time.time() - start_time)

    def create_input_stream(self, url: URL, use_post_command: bool = False,
                            progress_callback: Optional[ProgressCallback] = None,
                            extra_headers: str = "", timeout_ms: int = 0) -> Optional[InputStream]:
        """Like open_stream(), but returns None instead of raising."""
        try:
            return self.open_stream(url, use_post_command, progress_callback,
                                    extra_headers, timeout_ms)
        except UserCancelled as e:
            logger.info("stream_cancelled", url=e.url, bytes_sent=e.bytes_sent,
                        total_bytes=e.total_bytes)
        except WeblinkError as e:
            logger.warning("stream_open_failed", url=e.url, error=str(e))
        return None

    def read_entire_binary_stream(self, url: URL, dest_data: bytearray,
                                  use_post_command: bool = False) -> bool:
        """Append the whole body to ``dest_data``. Nothing is appended on failure."""
        stream = self.create_input_stream(url, use_post_command)
        if stream is None:
            return False

        with stream:
            try:
                data = stream.read()
            except ConnectionFailure as e:
                logger.warning("stream_read_failed", url=e.url, error=str(e))
                return False

        dest_data += data
        return True

    def read_entire_text_stream(self, url: URL, use_post_command: bool = False) -> str:
        """Download the body as text, or "" if anything goes wrong.

        An empty result can't be told apart from a failure; use
        read_entire_binary_stream() when that matters.
        """
        stream = self.create_input_stream(url, use_post_command)
        if stream is None:
            return ""

        with stream:
            try:
                content = stream.read()
            except ConnectionFailure as e:
                logger.warning("stream_read_failed", url=e.url, error=str(e))
                return ""
            return _decode_text(content, stream.encoding)

    def read_entire_xml_stream(self, url: URL, use_post_command: bool = False):
        """Download and parse the body as XML; returns the root element or None."""
        text = self.read_entire_text_stream(url, use_post_command)
        if not text:
            return None

        try:
            return parse_xml(text)
        except ParseFailure as e:
            logger.warning("xml_parse_failed", url=str(url), error=str(e))
            return None

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "URLOpener":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _decode_text(content: bytes, encoding: Optional[str]) -> str:
    if not content:
        return ""
    try:
        return content.decode(encoding or 'utf-8')
    except (UnicodeDecodeError, LookupError):
        return content.decode('utf-8', errors='replace')


def parse_xml(text: str):
    """Parse ``text`` into an lxml element tree root."""
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        return etree.fromstring(text.encode('utf-8'), parser=parser)
    except etree.XMLSyntaxError as e:
        raise ParseFailure(f"Invalid XML: {e}") from e


_default_opener: Optional[URLOpener] = None
_default_lock = threading.Lock()


def get_default_opener() -> URLOpener:
    """Return the shared opener used by the URL convenience methods."""
    global _default_opener
    with _default_lock:
        if _default_opener is None:
            _default_opener = URLOpener()
        return _default_opener


def set_default_opener(opener: Optional[URLOpener]) -> Optional[URLOpener]:
    """Replace the shared opener and return the previous one."""
    global _default_opener
    with _default_lock:
        previous, _default_opener = _default_opener, opener
        return previous
