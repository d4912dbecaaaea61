"""
Failures raised while opening a stream against a URL.

Only the raising APIs (URLOpener.open_stream) let these escape; the
convenience wrappers log them and return an empty result instead.
"""

from typing import Optional


class WeblinkError(Exception):
    """Base class for every failure the opener reports."""

    def __init__(self, message: str, url: str = None):
        super().__init__(message)
        self.url = url


class ConnectionFailure(WeblinkError):
    """The transport could not connect, timed out or dropped the exchange."""


class HTTPStatusFailure(ConnectionFailure):
    """The server answered, but with an error status."""

    def __init__(self, status_code: int, url: str = None):
        super().__init__(f"HTTP {status_code}", url=url)
        self.status_code = status_code


class UserCancelled(WeblinkError):
    """The progress callback asked to stop the transfer."""

    def __init__(self, bytes_sent: int, total_bytes: int, url: str = None):
        super().__init__(f"Cancelled after {bytes_sent} of {total_bytes} bytes", url=url)
        self.bytes_sent = bytes_sent
        self.total_bytes = total_bytes


class UploadFileUnavailable(WeblinkError):
    """A file registered for upload is missing or unreadable when the request is sent."""

    def __init__(self, path, reason: Optional[str] = None, url: str = None):
        message = f"Upload file unavailable: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message, url=url)
        self.path = path


class ParseFailure(WeblinkError):
    """The downloaded text is not a well-formed XML document."""
