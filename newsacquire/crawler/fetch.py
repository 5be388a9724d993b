"""Single-attempt HTTP client.

``FetchClient.fetch`` performs exactly one network round trip. Retry policy,
identity rotation and fallbacks live one layer up in ``retry.py``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional
from urllib.parse import urljoin

import requests
from requests.structures import CaseInsensitiveDict

from . import FetchTimeoutError, NetworkError, ValidationError, http_error_for_status
from .utils import normalize_domain, validate_public_url

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
CHUNK_SIZE = 8192
MAX_REDIRECTS = 10
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

FATAL_NETWORK_SIGNATURES = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "failed to resolve",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "err_name_not_resolved",
    "enotfound",
    "connection refused",
    "econnrefused",
    "errno 111",
    "errno 61",
)


class BodyReader:
    """Lazily reads (at most ``limit`` bytes of) a streamed response body."""

    def __init__(self, response: Any, limit: Optional[int] = None):
        self._response = response
        self._limit = limit
        self._content: Optional[bytes] = None

    def read_bytes(self) -> bytes:
        if self._content is not None:
            return self._content

        chunks: list[bytes] = []
        received = 0
        try:
            for chunk in self._response.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                chunks.append(chunk)
                received += len(chunk)
                if self._limit is not None and received >= self._limit:
                    break
        except requests.exceptions.Timeout as exc:
            raise FetchTimeoutError(f"Timed out reading body: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Failed reading body: {exc}") from exc
        finally:
            self.close()

        content = b"".join(chunks)
        if self._limit is not None:
            content = content[: self._limit]
        self._content = content
        return content

    def close(self) -> None:
        close = getattr(self._response, "close", None)
        if callable(close):
            close()

    def read_text(self) -> str:
        encoding = getattr(self._response, "encoding", None) or "utf-8"
        try:
            return self.read_bytes().decode(encoding, errors="replace")
        except LookupError:
            return self.read_bytes().decode("utf-8", errors="replace")


@dataclass
class FetchResponse:
    status: int
    url: str
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    cookies: dict[str, str] = field(default_factory=dict)
    body: Optional[BodyReader] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.read_text() if self.body is not None else ""

    def close(self) -> None:
        if self.body is not None:
            self.body.close()

    def raise_for_status(self) -> None:
        if not self.ok:
            raise http_error_for_status(self.status, self.url)

    def cookie_header(self) -> Optional[str]:
        if not self.cookies:
            return None
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())


def is_fatal_network_message(message: str) -> bool:
    lowered = (message or "").lower()
    return any(signature in lowered for signature in FATAL_NETWORK_SIGNATURES)


class FetchClient:
    """Issues one HTTP request per call through per-domain sessions."""

    def __init__(self, proxies: Optional[Mapping[str, str]] = None):
        self.proxies = dict(proxies or {})
        self.domain_sessions: dict[str, requests.Session] = {}
        self._sessions_lock = threading.Lock()

    def _get_domain_session(self, url: str) -> requests.Session:
        domain = normalize_domain(url)
        with self._sessions_lock:
            session = self.domain_sessions.get(domain)
            if session is None:
                session = requests.Session()
                if self.proxies:
                    session.proxies.update(self.proxies)
                self.domain_sessions[domain] = session
        return session

    def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        byte_range: Optional[int] = None,
    ) -> FetchResponse:
        """Perform one request.

        Args:
            url: Target URL; must pass public-host validation.
            method: HTTP method (GET or HEAD in practice).
            headers: Complete header set for this attempt.
            timeout_ms: Connect/read timeout.
            byte_range: When set, request and read only the first
                ``byte_range`` bytes.

        Returns:
            FetchResponse for any status code. Non-2xx is not raised here.

        Raises:
            ValidationError: URL fails validation.
            NetworkError: DNS, connection or proxy failure.
            FetchTimeoutError: the request timed out.
        """
        validate_public_url(url)

        request_headers = dict(headers or {})
        if byte_range:
            request_headers["Range"] = f"bytes=0-{byte_range - 1}"

        session = self._get_domain_session(url)
        timeout = max(timeout_ms, 1) / 1000.0
        method = method.upper()
        origin_domain = normalize_domain(url)
        cookies: dict[str, str] = {}
        current = url

        # Redirects are followed by hand so every hop passes host validation
        try:
            for _ in range(MAX_REDIRECTS + 1):
                response = self._send(session, method, current, request_headers, timeout, timeout_ms)
                cookies.update((cookie.name, cookie.value) for cookie in response.cookies)
                location = response.headers.get("Location")
                if response.status_code not in REDIRECT_STATUSES or not location:
                    break
                response.close()

                target = urljoin(current, location)
                validate_public_url(target)
                logger.debug(f"{method} {current} -> {response.status_code} redirect to {target}")
                if response.status_code == 303 and method != "HEAD":
                    method = "GET"
                if normalize_domain(target) != origin_domain:
                    request_headers.pop("Cookie", None)
                current = target
            else:
                raise NetworkError(f"Too many redirects (>{MAX_REDIRECTS}) for {url}")
        finally:
            # Cookies are managed explicitly through the warm-up store.
            session.cookies.clear()

        elapsed = getattr(response, "elapsed", None)
        elapsed_ms = elapsed.total_seconds() * 1000 if elapsed is not None else 0.0

        logger.debug(f"{method} {url} -> {response.status_code}")
        return FetchResponse(
            status=response.status_code,
            url=response.url or current,
            headers=response.headers,
            cookies=cookies,
            body=BodyReader(response, limit=byte_range),
            elapsed_ms=elapsed_ms,
        )

    @staticmethod
    def _send(session, method: str, url: str, headers: dict, timeout: float, timeout_ms: int):
        try:
            return session.request(
                method,
                url,
                headers=headers,
                timeout=timeout,
                stream=True,
                allow_redirects=False,
            )
        except requests.exceptions.Timeout as exc:
            raise FetchTimeoutError(f"Timed out after {timeout_ms}ms: {url}") from exc
        except (
            requests.exceptions.InvalidURL,
            requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema,
        ) as exc:
            raise ValidationError(f"Invalid URL {url}: {exc}") from exc
        except requests.exceptions.ConnectionError as exc:
            message = str(exc)
            raise NetworkError(
                f"Connection failed for {url}: {message}",
                fatal=is_fatal_network_message(message),
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise NetworkError(f"Request failed for {url}: {exc}") from exc

    def close(self) -> None:
        with self._sessions_lock:
            for session in self.domain_sessions.values():
                session.close()
            self.domain_sessions.clear()
