"""
Low-level page fetchers.

The orchestrator only depends on the PageFetcher protocol. CurlCffiFetcher
is the one concrete adapter: a curl_cffi session that impersonates a real
browser TLS fingerprint so ordinary anti-bot filters let it through.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

from curl_cffi import CurlError
from curl_cffi.requests import AsyncSession

from leadpipe.common import ErrorCode
from leadpipe.errors import BlockedError, NetworkError
from leadpipe.scrape.html import extract_text

logger = logging.getLogger(__name__)

# Statuses that usually mean a bot wall rather than a broken site
BLOCK_STATUS_CODES = {401, 403, 429, 503}

# Anti-bot challenge phrases, only checked on short pages
BLOCK_PATTERNS = [
    "captcha",
    "verify you are human",
    "verify you're human",
    "are you a robot",
    "not a robot",
    "bot detection",
    "unusual traffic",
    "automated access",
    "checking your browser",
    "just a moment",
    "attention required",
    "please wait while we verify",
    "ddos protection by",
    "access denied",
]
BLOCK_CHECK_MAX_TEXT = 1500


@dataclass
class FetchedPage:
    """Raw HTTP response body of one page."""

    url: str
    status_code: int
    html: str
    headers: Dict[str, str] = field(default_factory=dict)


class PageFetcher(Protocol):
    """Capability interface for the lightweight fetch step."""

    async def fetch(self, url: str, timeout: float) -> FetchedPage:
        ...


def detect_block(status_code: int, html: str) -> Optional[str]:
    """
    Return the reason a response looks like an anti-bot wall, or None.
    """
    if status_code in BLOCK_STATUS_CODES:
        return f"suspicious status {status_code}"

    text = extract_text(html)
    if len(text) > BLOCK_CHECK_MAX_TEXT:
        return None

    lowered = text.lower()
    for pattern in BLOCK_PATTERNS:
        if pattern in lowered:
            return f"challenge page ({pattern!r})"
    return None


class CurlCffiFetcher:
    """PageFetcher backed by a browser-impersonating curl_cffi session."""

    def __init__(self, impersonate: str = "chrome124", headers: Optional[Dict[str, str]] = None):
        self.impersonate = impersonate
        self.headers = headers or {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_session(self) -> AsyncSession:
        if self._session is None:
            self._session = AsyncSession(impersonate=self.impersonate)
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch(self, url: str, timeout: float) -> FetchedPage:
        """
        Fetch one page.

        Raises:
            NetworkError: DNS, connection, timeout or an unusable status
            BlockedError: anti-bot challenge or suspicious status
        """
        session = self._get_session()
        try:
            response = await session.get(
                url, timeout=timeout, allow_redirects=True, headers=self.headers
            )
        except CurlError as exc:
            message = str(exc)
            code = ErrorCode.HTTP_TIMEOUT if "timed out" in message.lower() else ErrorCode.NETWORK_ERROR
            raise NetworkError(f"{url}: {message}", code=code) from exc

        html = response.text or ""
        status = response.status_code

        block_reason = detect_block(status, html)
        if block_reason:
            raise BlockedError(f"{url}: {block_reason}", status_code=status)
        if status >= 400:
            raise NetworkError(f"{url}: HTTP {status}")

        headers = {k.lower(): v for k, v in response.headers.items()}
        logger.debug(f"Fetched {url} ({status}, {len(html)} bytes)")
        return FetchedPage(url=str(response.url or url), status_code=status, html=html, headers=headers)
