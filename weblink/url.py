"""
URL value type: an address plus the GET/POST parameters, upload files and
raw POST data that go with it.

A URL is never changed after construction. Every with_* method hands back a
new, independent URL, so values can be shared between threads and chained
freely:

    url = (URL("http://example.com/upload")
           .with_parameter("user", "jo")
           .with_file_to_upload("photo", "/tmp/me.png", "image/png"))
"""

import mimetypes
import re
import webbrowser
from pathlib import Path
from typing import Dict, Optional, Union

import structlog

from . import codec
from .config import config

logger = structlog.get_logger(__name__)

_WELL_FORMED = re.compile(
    r"^[A-Za-z][A-Za-z0-9+.\-]*:(//)?[^/?#\s]+([/?#]\S*)?$"
)
_HOST_LABEL = re.compile(r"^[^.\s/?#:@]+$")

PathLike = Union[str, Path]


class URL:
    """An immutable URL with attached request parameters."""

    def __init__(self, address: Union[str, "URL"] = ""):
        if isinstance(address, URL):
            other = address
            self._address = other._address
            self._parameters = dict(other._parameters)
            self._files = dict(other._files)
            self._mime_types = dict(other._mime_types)
            self._post_data = other._post_data
            return

        self._address = (address or "").strip()
        self._parameters: Dict[str, str] = {}
        self._files: Dict[str, Path] = {}
        self._mime_types: Dict[str, str] = {}
        self._post_data: Optional[bytes] = None

    # -- accessors ---------------------------------------------------------

    @property
    def address(self) -> str:
        return self._address

    @property
    def parameters(self) -> Dict[str, str]:
        """GET/POST parameters added with with_parameter(), in insertion order."""
        return dict(self._parameters)

    @property
    def files_to_upload(self) -> Dict[str, Path]:
        return dict(self._files)

    @property
    def mime_types_of_upload_files(self) -> Dict[str, str]:
        return dict(self._mime_types)

    @property
    def post_data(self) -> str:
        """POST data set with with_post_data(), or an empty string."""
        if self._post_data is None:
            return ""
        return self._post_data.decode("utf-8", errors="replace")

    @property
    def post_data_bytes(self) -> Optional[bytes]:
        return self._post_data

    @property
    def has_post_data(self) -> bool:
        return self._post_data is not None

    # -- derived copies ----------------------------------------------------

    def _copy(self) -> "URL":
        return URL(self)

    def __copy__(self) -> "URL":
        return self._copy()

    def __deepcopy__(self, memo) -> "URL":
        return self._copy()

    def with_parameter(self, name: str, value) -> "URL":
        """Return a copy with a GET/POST parameter added.

        Re-using a name replaces the earlier value but keeps its position.
        """
        u = self._copy()
        u._parameters[str(name)] = "" if value is None else str(value)
        return u

    def with_file_to_upload(self, name: str, path: PathLike, mime_type: str = "") -> "URL":
        """Return a copy that will upload ``path`` as the multipart field ``name``.

        Only the path is stored; the file is read when a stream is opened.
        """
        path = Path(path)
        if not mime_type:
            mime_type = mimetypes.guess_type(path.name)[0] or config.upload.get(
                "default_mime_type", "application/octet-stream"
            )

        u = self._copy()
        u._files[str(name)] = path
        u._mime_types[str(name)] = mime_type
        return u

    def with_post_data(self, data: Union[str, bytes]) -> "URL":
        """Return a copy whose POST body is ``data``, replacing any earlier body."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        u = self._copy()
        u._post_data = bytes(data)
        return u

    def with_new_sub_path(self, new_path: str) -> "URL":
        """Return a copy pointing at a different path on the same host.

        A literal query string in the address is kept, e.g.
        "http://x.com/foo?x=1" with "bar" becomes "http://x.com/bar?x=1".
        """
        domain_end = self._domain_end()
        query_start = self._address.find("?", domain_end)
        query = self._address[query_start:] if query_start >= 0 else ""

        if new_path.startswith("/"):
            new_path = new_path[1:]

        u = self._copy()
        u._address = self._address[:domain_end] + "/" + new_path + query
        return u

    # -- grammar -----------------------------------------------------------

    def _domain_start(self) -> int:
        colon = self._address.find(":")
        if colon >= 0 and self._address.startswith("//", colon + 1):
            return colon + 3
        return 0

    def _domain_end(self) -> int:
        start = self._domain_start()
        end = len(self._address)
        for sep in "/?":
            i = self._address.find(sep, start)
            if 0 <= i < end:
                end = i
        return end

    def get_scheme(self) -> str:
        """Return the scheme without its colon, e.g. "http"."""
        start = self._domain_start()
        return self._address[:start - 3] if start else ""

    def get_domain(self) -> str:
        """Return the host part, e.g. "www.xyz.com" for "http://www.xyz.com/foobar"."""
        return self._address[self._domain_start():self._domain_end()]

    def get_sub_path(self) -> str:
        """Return the path after the host, e.g. "foo/bar" for "http://xyz.com/foo/bar?x=1"."""
        rest = self._address[self._domain_end():]
        if rest.startswith("/"):
            rest = rest[1:]
        return rest.split("?", 1)[0]

    def is_well_formed(self) -> bool:
        """Rough check that the address looks like scheme:[//]host[/path]."""
        return _WELL_FORMED.match(self._address) is not None

    def get_query_parameters(self) -> Dict[str, str]:
        """Decode the query string written literally into the address."""
        query_start = self._address.find("?", self._domain_end())
        if query_start < 0:
            return {}

        query = self._address[query_start + 1:].split("#", 1)[0]
        params = {}
        for item in query.split("&"):
            if not item:
                continue
            name, _, value = item.partition("=")
            params[codec.decode(name)] = codec.decode(value)
        return params

    def get_named_parameter(self, name: str, default: str = "") -> str:
        if name in self._parameters:
            return self._parameters[name]
        return self.get_query_parameters().get(name, default)

    def to_string(self, include_get_parameters: bool) -> str:
        """Return the address, optionally with the encoded parameters appended."""
        if not include_get_parameters or not self._parameters:
            return self._address

        separator = "&" if "?" in self._address else "?"
        return self._address + separator + self.encoded_parameters()

    def encoded_parameters(self) -> str:
        """Parameters as name=value pairs joined by '&', values form-encoded."""
        return "&".join(
            f"{name}={codec.encode(value, True)}"
            for name, value in self._parameters.items()
        )

    # -- escaping ----------------------------------------------------------

    add_escape_chars = staticmethod(codec.encode)
    remove_escape_chars = staticmethod(codec.decode)

    # -- heuristics --------------------------------------------------------

    @staticmethod
    def is_probably_a_website_url(possible_url: str) -> bool:
        """Guess whether a string is a web address. This isn't foolproof."""
        text = (possible_url or "").strip()
        if not text or any(c.isspace() for c in text) or "@" in text:
            return False

        lower = text.lower()
        if lower.startswith(("http:", "https:", "ftp:")):
            return True

        host = re.split(r"[/?#]", text, maxsplit=1)[0].split(":", 1)[0]
        labels = host.split(".")
        if len(labels) < 2 or not all(_HOST_LABEL.match(label) for label in labels):
            return False
        return labels[-1].isalpha()

    @staticmethod
    def is_probably_an_email_address(possible_email: str) -> bool:
        """Guess whether a string is an email address. This isn't foolproof."""
        text = possible_email or ""
        if any(c.isspace() for c in text) or text.count("@") != 1:
            return False

        local, domain = text.split("@")
        if not local:
            return False
        dot = domain.find(".")
        return 0 < dot < len(domain) - 1

    # -- outside world -----------------------------------------------------

    def launch_in_default_browser(self) -> bool:
        """Try to open this URL in the system's browser."""
        target = self.to_string(True)
        try:
            opened = webbrowser.open(target)
        except webbrowser.Error as e:
            logger.warning("browser_launch_failed", url=target, error=str(e))
            return False

        if not opened:
            logger.warning("browser_launch_failed", url=target, error="no runnable browser")
        return bool(opened)

    def create_input_stream(self, use_post_command: bool = False, progress_callback=None,
                            extra_headers: str = "", timeout_ms: int = 0, opener=None):
        """Open a readable stream, or return None if that fails. See URLOpener."""
        return _opener(opener).create_input_stream(
            self,
            use_post_command=use_post_command,
            progress_callback=progress_callback,
            extra_headers=extra_headers,
            timeout_ms=timeout_ms,
        )

    def read_entire_binary_stream(self, dest_data: bytearray, use_post_command: bool = False,
                                  opener=None) -> bool:
        return _opener(opener).read_entire_binary_stream(self, dest_data, use_post_command)

    def read_entire_text_stream(self, use_post_command: bool = False, opener=None) -> str:
        return _opener(opener).read_entire_text_stream(self, use_post_command)

    def read_entire_xml_stream(self, use_post_command: bool = False, opener=None):
        return _opener(opener).read_entire_xml_stream(self, use_post_command)

    # -- value semantics ---------------------------------------------------

    def _key(self):
        return (
            self._address,
            tuple(self._parameters.items()),
            tuple(self._files.items()),
            tuple(self._mime_types.items()),
            self._post_data,
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, URL):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return self.to_string(False)

    def __repr__(self) -> str:
        return (
            f"URL({self._address!r}, parameters={len(self._parameters)}, "
            f"files={len(self._files)})"
        )


def _opener(opener):
    if opener is not None:
        return opener
    from .opener import get_default_opener
    return get_default_opener()
