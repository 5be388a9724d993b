"""Acquisition core: fetching, probing, retrying and discovering articles.

Submodules are imported explicitly by callers; this package module only
holds the error taxonomy shared by all of them.
"""

from __future__ import annotations

from typing import Optional

BLOCKING_STATUSES = frozenset({401, 403, 405, 406, 429})


class AcquisitionError(Exception):
    """Base class for every failure raised by the acquisition core."""

    pass


class NetworkError(AcquisitionError):
    """DNS, connection or proxy level failure; no HTTP response was received.

    ``fatal`` is set for failures that will not heal on retry (name
    resolution failures, connection refused).
    """

    def __init__(self, message: str, fatal: bool = False):
        super().__init__(message)
        self.fatal = fatal


class HttpError(AcquisitionError):
    """A non-2xx response was received."""

    def __init__(self, status: int, message: Optional[str] = None, url: str = ""):
        super().__init__(message or f"HTTP {status} for {url}".strip())
        self.status = status
        self.url = url


class BlockedError(HttpError):
    """401/403/405/406/429: the site is refusing us rather than failing."""

    pass


class InvalidContentError(AcquisitionError):
    """A 2xx response whose body failed content validation."""

    pass


class ValidationError(AcquisitionError):
    """Malformed URL, disallowed host or malformed configuration."""

    pass


class FetchTimeoutError(AcquisitionError, TimeoutError):
    """A request or a per-source deadline was exceeded."""

    pass


class ArcApiError(AcquisitionError):
    """The content-platform API answered with an error status."""

    def __init__(self, status: Optional[int], message: str):
        super().__init__(message)
        self.status = status


def http_error_for_status(status: int, url: str = "") -> HttpError:
    """Build the right ``HttpError`` subclass for a response status."""
    if status in BLOCKING_STATUSES:
        return BlockedError(status, f"HTTP {status} (blocked) for {url}", url=url)
    return HttpError(status, f"HTTP {status} for {url}", url=url)
