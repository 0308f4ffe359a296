"""
Render strategy selection.

Try the cheap fetch first and fall back to a headless render only when the
page needs JavaScript or the fetch hit an anti-bot wall.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from leadpipe.errors import BlockedError, PoolExhaustedError, RenderError
from leadpipe.scrape.fetcher import PageFetcher, detect_block
from leadpipe.scrape.html import extract_links, extract_text, extract_title, needs_render
from leadpipe.scrape.page_pool import PagePool

RENDERED_VIA_FETCH = "fetch"
RENDERED_VIA_RENDER = "render"


@dataclass
class PageContent:
    """One page ready for extraction."""

    url: str
    html: str
    text: str
    title: str
    links: List[str] = field(default_factory=list)
    rendered_via: str = RENDERED_VIA_FETCH
    status_code: Optional[int] = None


def build_page_content(url: str, html: str, rendered_via: str, status_code: Optional[int] = None) -> PageContent:
    return PageContent(
        url=url,
        html=html,
        text=extract_text(html),
        title=extract_title(html),
        links=extract_links(html, url),
        rendered_via=rendered_via,
        status_code=status_code,
    )


class RenderStrategySelector:
    """
    Decide between a lightweight fetch and a headless render per page.

    Without a page pool (fast mode) every page is fetch-only: thin pages are
    returned as fetched and blocked pages fail immediately.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        page_pool: Optional[PagePool] = None,
        fetch_timeout: float = 15.0,
        render_timeout: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.fetcher = fetcher
        self.page_pool = page_pool
        self.fetch_timeout = fetch_timeout
        self.render_timeout = render_timeout
        self.logger = logger or logging.getLogger(__name__)

    @property
    def can_render(self) -> bool:
        return self.page_pool is not None

    async def fetch_page(self, url: str) -> PageContent:
        """
        Fetch one page, escalating to a render when required.

        A thin page whose render fails twice is returned as fetched, so the
        homepage text still reaches extraction.

        Raises:
            NetworkError: the lightweight fetch failed
            BlockedError: blocked, and the single render escalation failed too
            PoolExhaustedError: blocked, and no render context was free to escalate
        """
        try:
            fetched = await self.fetcher.fetch(url, self.fetch_timeout)
        except BlockedError as exc:
            if not self.can_render:
                raise
            self.logger.info(f"🛡️ Blocked on fetch, escalating to render: {url}")
            try:
                return await self._render(url)
            except PoolExhaustedError:
                raise
            except (RenderError, BlockedError) as render_exc:
                raise BlockedError(
                    f"{exc} (render escalation failed: {render_exc})", status_code=exc.status_code
                ) from render_exc

        page = build_page_content(fetched.url, fetched.html, RENDERED_VIA_FETCH, fetched.status_code)
        if not self.can_render or not needs_render(page.html, page.text):
            return page

        self.logger.debug(f"Page needs rendering: {url}")
        try:
            return await self._render(url)
        except RenderError as exc:
            self.logger.warning(f"⚠️ Render failed, retrying once: {url} ({exc})")

        try:
            return await self._render(url)
        except RenderError as exc:
            self.logger.warning(f"⚠️ Render failed again, keeping the fetched page: {url} ({exc})")
            return page

    async def _render(self, url: str) -> PageContent:
        timeout_ms = int(self.render_timeout * 1000)
        async with self.page_pool.checkout() as page:
            try:
                response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                html = await page.content()
                final_url = page.url or url
            except PlaywrightTimeoutError as exc:
                raise RenderError(f"{url}: navigation timed out after {self.render_timeout}s") from exc
            except PlaywrightError as exc:
                raise RenderError(f"{url}: {exc}") from exc

        status = response.status if response is not None else None
        block_reason = detect_block(status or 200, html)
        if block_reason:
            raise BlockedError(f"{url}: {block_reason} after render", status_code=status)

        return build_page_content(final_url, html, RENDERED_VIA_RENDER, status)
