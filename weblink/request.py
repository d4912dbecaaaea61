"""
Turns a URL into the method, headers and body that go on the wire.

Three encodings are possible:
- GET: parameters are appended to the address, no body
- urlencoded POST: parameters (or the explicit POST data) form the body
- multipart POST: used whenever the URL carries upload files

Upload files are read here, so this must only run when the request is
actually about to be sent.
"""

import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

import structlog

from .errors import UploadFileUnavailable
from .url import URL

logger = structlog.get_logger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
MULTIPART_CONTENT_TYPE = "multipart/form-data"
BOUNDARY_PREFIX = "weblink-"

CRLF = b"\r\n"


class RequestEncoding(str, Enum):
    GET = "get"
    URLENCODED = "urlencoded"
    MULTIPART = "multipart"


@dataclass
class PreparedRequest:
    """A request ready to be handed to the HTTP transport."""
    method: str
    url: str
    encoding: RequestEncoding
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    boundary: Optional[str] = None

    @property
    def content_length(self) -> int:
        return len(self.body)

    def header(self, name: str) -> Optional[str]:
        """First value of a header, matched case-insensitively."""
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None


def select_encoding(url: URL, use_post_command: bool) -> RequestEncoding:
    if not use_post_command:
        return RequestEncoding.GET
    if url.files_to_upload:
        return RequestEncoding.MULTIPART
    return RequestEncoding.URLENCODED


def build_request(url: URL, use_post_command: bool, extra_headers: str = "",
                  boundary: Optional[str] = None) -> PreparedRequest:
    """Build the wire form of ``url``.

    Args:
        url: The URL value to send.
        use_post_command: POST the parameters instead of appending them to the address.
        extra_headers: Newline-separated "Name: value" lines, appended after
            the generated headers without deduplication.
        boundary: Fixed multipart boundary; a fresh one is generated when None.

    Raises:
        UploadFileUnavailable: An upload file is missing or unreadable.
    """
    encoding = select_encoding(url, use_post_command)

    if encoding is RequestEncoding.GET:
        request = PreparedRequest(
            method="GET",
            url=url.to_string(True),
            encoding=encoding,
        )
    elif encoding is RequestEncoding.URLENCODED:
        request = _build_urlencoded(url)
    else:
        request = _build_multipart(url, boundary)

    request.headers.extend(parse_extra_headers(extra_headers))
    return request


def _build_urlencoded(url: URL) -> PreparedRequest:
    if url.has_post_data:
        if url.parameters:
            logger.warning("post_data_overrides_parameters",
                           url=url.address,
                           ignored_parameters=list(url.parameters))
        body = url.post_data_bytes
    else:
        body = url.encoded_parameters().encode("ascii")

    return PreparedRequest(
        method="POST",
        url=url.address,
        encoding=RequestEncoding.URLENCODED,
        headers=[
            ("Content-Type", FORM_CONTENT_TYPE),
            ("Content-Length", str(len(body))),
        ],
        body=body,
    )


def _build_multipart(url: URL, boundary: Optional[str]) -> PreparedRequest:
    if url.has_post_data:
        logger.warning("post_data_ignored_for_multipart", url=url.address)

    mime_types = url.mime_types_of_upload_files
    fields = [(name, value.encode("utf-8")) for name, value in url.parameters.items()]
    files = [
        (name, path.name, mime_types[name], _read_upload(path, url.address))
        for name, path in url.files_to_upload.items()
    ]

    if boundary is None:
        boundary = make_boundary([value for _, value in fields] + [data for *_, data in files])

    body = encode_multipart(boundary, fields, files)

    return PreparedRequest(
        method="POST",
        url=url.address,
        encoding=RequestEncoding.MULTIPART,
        headers=[
            ("Content-Type", f"{MULTIPART_CONTENT_TYPE}; boundary={boundary}"),
            ("Content-Length", str(len(body))),
        ],
        body=body,
        boundary=boundary,
    )


def _read_upload(path, address: str) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        logger.warning("upload_file_unavailable", url=address, path=str(path), error=str(e))
        raise UploadFileUnavailable(path, reason=e.strerror or str(e), url=address) from e


def make_boundary(payloads: Iterable[bytes]) -> str:
    """Generate a boundary token that occurs in none of ``payloads``."""
    payloads = list(payloads)
    while True:
        boundary = BOUNDARY_PREFIX + secrets.token_hex(16)
        token = boundary.encode("ascii")
        if not any(token in payload for payload in payloads):
            return boundary


def _quote_disposition(value: str) -> str:
    return value.replace("\r", "").replace("\n", "").replace('"', "%22")


def encode_multipart(boundary: str, fields: List[Tuple[str, bytes]],
                     files: List[Tuple[str, str, str, bytes]]) -> bytes:
    """Pack form fields and files into a multipart/form-data body.

    Fields come first, then files, each in the order given.
    """
    delimiter = b"--" + boundary.encode("ascii")
    out = bytearray()

    for name, value in fields:
        out += delimiter + CRLF
        out += f'Content-Disposition: form-data; name="{_quote_disposition(name)}"'.encode("utf-8") + CRLF
        out += CRLF
        out += value + CRLF

    for name, filename, mime_type, data in files:
        out += delimiter + CRLF
        out += (
            f'Content-Disposition: form-data; name="{_quote_disposition(name)}"; '
            f'filename="{_quote_disposition(filename)}"'
        ).encode("utf-8") + CRLF
        out += f"Content-Type: {mime_type}".encode("utf-8") + CRLF
        out += CRLF
        out += data + CRLF

    out += delimiter + b"--" + CRLF
    return bytes(out)


def parse_extra_headers(extra_headers: str) -> List[Tuple[str, str]]:
    """Split newline-separated header lines into (name, value) pairs."""
    headers = []
    for line in (extra_headers or "").split("\n"):
        line = line.strip("\r")
        if not line.strip():
            continue
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            logger.warning("extra_header_ignored", line=line)
            continue
        headers.append((name.strip(), value.strip()))
    return headers

