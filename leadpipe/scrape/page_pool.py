"""
Headless-browser page pool.

A fixed arena of render slots, each holding one Playwright browser context
and page. Workers borrow a slot with `async with pool.checkout() as page:`;
the slot index always goes back to the free queue, and a slot whose borrower
raised is rebuilt before its next use.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from leadpipe.errors import PoolExhaustedError, RenderError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]

BrowserLauncher = Callable[[], Awaitable[Any]]


@dataclass
class _Slot:
    index: int
    context: Optional[Any] = None
    page: Optional[Any] = None
    generation: int = -1
    dirty: bool = False


class PagePool:
    """Bounded pool of reusable headless render contexts."""

    def __init__(
        self,
        size: int = 3,
        wait_timeout: float = 45.0,
        launcher: Optional[BrowserLauncher] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        logger: Optional[logging.Logger] = None,
    ):
        if size < 1:
            raise ValueError("page pool size must be at least 1")
        self.size = size
        self.wait_timeout = wait_timeout
        self.user_agent = user_agent
        self.logger = logger or logging.getLogger(__name__)
        self._launcher = launcher
        self._slots: List[_Slot] = [_Slot(index=i) for i in range(size)]
        self._free: Optional[asyncio.Queue] = None
        self._launch_lock: Optional[asyncio.Lock] = None
        self._playwright = None
        self._browser = None
        self._generation = 0
        self.relaunch_count = 0

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._free is not None:
            return
        self._free = asyncio.Queue()
        for slot in self._slots:
            self._free.put_nowait(slot.index)
        self._launch_lock = asyncio.Lock()
        self._browser = await self._launch()
        self.logger.info(f"🌐 Page pool started with {self.size} render slots")

    async def close(self) -> None:
        for slot in self._slots:
            await self._discard(slot)
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                self.logger.debug(f"Browser close failed: {exc}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._free = None

    async def _launch(self):
        if self._launcher is not None:
            return await self._launcher()
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=True, args=BROWSER_ARGS)

    @property
    def available(self) -> int:
        return self._free.qsize() if self._free is not None else 0

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def checkout(self) -> AsyncIterator[Any]:
        """
        Borrow a ready page for the duration of the `async with` block.

        Raises:
            PoolExhaustedError: no slot freed up within wait_timeout
            RenderError: the browser could not be (re)launched
        """
        if self._free is None:
            raise RenderError("page pool is not started")

        try:
            index = await asyncio.wait_for(self._free.get(), timeout=self.wait_timeout)
        except asyncio.TimeoutError:
            raise PoolExhaustedError(f"no render context free after {self.wait_timeout}s") from None

        slot = self._slots[index]
        try:
            page = await self._ready_page(slot)
            yield page
        except BaseException:
            # Rebuilt lazily on next checkout; nothing awaited here
            slot.dirty = True
            raise
        finally:
            self._free.put_nowait(index)

    def _reusable(self, slot: _Slot) -> bool:
        return (
            slot.page is not None
            and not slot.dirty
            and slot.generation == self._generation
            and self._browser_connected()
        )

    def _browser_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def _ready_page(self, slot: _Slot):
        if self._reusable(slot):
            return slot.page

        await self._discard(slot)
        seen_generation = self._generation
        try:
            if not self._browser_connected():
                raise PlaywrightError("browser is not connected")
            return await self._open(slot)
        except PlaywrightError as exc:
            self.logger.warning(f"⚠️ Render slot {slot.index} unavailable ({exc}), relaunching browser")

        try:
            await self._relaunch(seen_generation)
            return await self._open(slot)
        except PlaywrightError as exc:
            raise RenderError(f"browser relaunch failed: {exc}") from exc

    async def _open(self, slot: _Slot):
        context = await self._browser.new_context(
            user_agent=self.user_agent,
            viewport={"width": 1366, "height": 900},
            ignore_https_errors=True,
        )
        slot.context = context
        slot.page = await context.new_page()
        slot.generation = self._generation
        slot.dirty = False
        return slot.page

    async def _discard(self, slot: _Slot) -> None:
        context, slot.context, slot.page = slot.context, None, None
        if context is None:
            return
        try:
            await context.close()
        except PlaywrightError as exc:
            # Contexts of a crashed browser cannot be closed cleanly
            self.logger.debug(f"Render slot {slot.index} close failed: {exc}")

    async def _relaunch(self, seen_generation: int) -> None:
        async with self._launch_lock:
            if self._generation != seen_generation and self._browser_connected():
                return

            old_browser, self._browser = self._browser, None
            if old_browser is not None:
                try:
                    await old_browser.close()
                except PlaywrightError as exc:
                    self.logger.debug(f"Crashed browser close failed: {exc}")

            self._browser = await self._launch()
            self._generation += 1
            self.relaunch_count += 1
            self.logger.info(f"🔄 Browser relaunched (generation {self._generation})")
