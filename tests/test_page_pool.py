import asyncio

import pytest

from leadpipe.errors import FailureKind, PoolExhaustedError, RenderError
from leadpipe.scrape.page_pool import PagePool
from tests.fakes import FakeLauncher


def make_pool(launcher, size=1, wait_timeout=0.5):
    return PagePool(size=size, wait_timeout=wait_timeout, launcher=launcher)


def test_size_must_be_positive():
    with pytest.raises(ValueError):
        PagePool(size=0)


def test_checkout_before_start_fails():
    async def scenario():
        pool = make_pool(FakeLauncher())
        with pytest.raises(RenderError):
            async with pool.checkout():
                pass

    asyncio.run(scenario())


def test_slot_page_is_reused():
    async def scenario():
        launcher = FakeLauncher()
        async with make_pool(launcher) as pool:
            async with pool.checkout() as first:
                pass
            async with pool.checkout() as second:
                pass
            assert first is second
            assert len(launcher.current.contexts) == 1
            assert pool.available == 1

    asyncio.run(scenario())


def test_slot_is_rebuilt_after_borrower_raises():
    async def scenario():
        launcher = FakeLauncher()
        async with make_pool(launcher) as pool:
            with pytest.raises(RuntimeError):
                async with pool.checkout():
                    raise RuntimeError("navigation blew up")
            assert pool.available == 1

            async with pool.checkout():
                pass
            contexts = launcher.current.contexts
            assert len(contexts) == 2
            assert contexts[0].closed is True
            assert contexts[1].closed is False

    asyncio.run(scenario())


def test_crashed_browser_is_relaunched():
    async def scenario():
        launcher = FakeLauncher()
        async with make_pool(launcher, size=2) as pool:
            async with pool.checkout():
                pass
            launcher.current.connected = False

            async with pool.checkout() as page:
                assert page.browser is launcher.current

            assert len(launcher.browsers) == 2
            assert pool.relaunch_count == 1
            assert launcher.browsers[0].closed is True

    asyncio.run(scenario())


def test_concurrent_slots_trigger_a_single_relaunch():
    async def scenario():
        launcher = FakeLauncher()
        async with make_pool(launcher, size=3) as pool:
            launcher.current.connected = False

            async def borrow():
                async with pool.checkout() as page:
                    await asyncio.sleep(0.01)
                    return page

            pages = await asyncio.gather(borrow(), borrow(), borrow())
            assert len({id(p) for p in pages}) == 3
            assert pool.relaunch_count == 1
            assert pool.available == 3

    asyncio.run(scenario())


def test_wait_timeout_raises_pool_exhausted():
    async def scenario():
        async with make_pool(FakeLauncher(), wait_timeout=0.05) as pool:
            async with pool.checkout():
                with pytest.raises(PoolExhaustedError) as info:
                    async with pool.checkout():
                        pass
                assert isinstance(info.value, RenderError)
                assert info.value.kind == FailureKind.CAPACITY
            assert pool.available == 1

    asyncio.run(scenario())


def test_failed_relaunch_raises_render_error():
    class BrokenLauncher(FakeLauncher):
        async def __call__(self):
            browser = await super().__call__()
            if len(self.browsers) > 1:
                browser.fail_new_context = 5
            return browser

    async def scenario():
        launcher = BrokenLauncher()
        async with make_pool(launcher) as pool:
            launcher.current.connected = False
            with pytest.raises(RenderError):
                async with pool.checkout():
                    pass
            assert pool.available == 1

    asyncio.run(scenario())
