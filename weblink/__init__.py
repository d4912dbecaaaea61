"""
URL values with GET/POST parameters and file uploads, and a blocking
HTTP stream opener for them.
"""

from .codec import decode, encode
from .errors import (
    ConnectionFailure,
    HTTPStatusFailure,
    ParseFailure,
    UploadFileUnavailable,
    UserCancelled,
    WeblinkError,
)
from .opener import InputStream, URLOpener, get_default_opener, set_default_opener
from .request import PreparedRequest, RequestEncoding, build_request
from .url import URL

__all__ = [
    "URL",
    "URLOpener",
    "InputStream",
    "PreparedRequest",
    "RequestEncoding",
    "build_request",
    "encode",
    "decode",
    "get_default_opener",
    "set_default_opener",
    "WeblinkError",
    "ConnectionFailure",
    "HTTPStatusFailure",
    "UserCancelled",
    "UploadFileUnavailable",
    "ParseFailure",
]
