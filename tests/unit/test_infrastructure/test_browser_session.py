"""Unit tests for BrowserSessionManager and ScopedPage.

The manager is given an in-process fake browser so no real browser is launched.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

pytest_plugins = ('pytest_asyncio',)

from storecrawl.browser_config import StealthPageSettings, Viewport
from storecrawl.config import CrawlerThresholds
from storecrawl.exceptions import SessionUnavailable
from storecrawl.infrastructure.browser_session import BrowserSessionManager


@pytest.fixture
def browser(make_browser):
    return make_browser(lambda url: "<html><body>ok</body></html>")


@pytest.fixture
def manager(browser, fast_thresholds):
    return BrowserSessionManager(
        max_concurrent_pages=2,
        thresholds=fast_thresholds,
        browser=browser,
        default_user_agent="TestAgent/1.0",
    )


class TestAcquirePage:
    """Page creation and the anti-detection bundle."""

    @pytest.mark.asyncio
    async def test_applies_page_settings(self, manager, browser):
        """Each page gets its own context with fingerprint options and init script."""
        settings = StealthPageSettings(viewport=Viewport(width=1366, height=768), locale="ko-KR")

        scoped = await manager.acquire_page(settings)

        context = browser.contexts[0]
        assert context.options["viewport"] == {"width": 1366, "height": 768}
        assert context.options["user_agent"] == "TestAgent/1.0"
        assert context.options["locale"] == "ko-KR"
        assert context.options["timezone_id"] == "Asia/Seoul"
        assert context.options["extra_http_headers"]["Accept-Language"].startswith("ko-KR")
        assert len(context.init_scripts) == 1
        assert "webdriver" in context.init_scripts[0]
        assert scoped.page is context.pages[0]
        assert scoped.settings is settings
        await scoped.release()

    @pytest.mark.asyncio
    async def test_custom_user_agent(self, manager, browser):
        scoped = await manager.acquire_page(StealthPageSettings(user_agent="Custom/2.0"))
        assert browser.contexts[0].options["user_agent"] == "Custom/2.0"
        await scoped.release()

    @pytest.mark.asyncio
    async def test_pages_are_isolated(self, manager, browser):
        first = await manager.acquire_page()
        second = await manager.acquire_page()

        assert len(browser.contexts) == 2
        assert first.context is not second.context
        assert first.page_id != second.page_id
        await first.release()
        await second.release()

    @pytest.mark.asyncio
    async def test_ceiling_enforced(self, manager):
        first = await manager.acquire_page()
        second = await manager.acquire_page()

        with pytest.raises(SessionUnavailable) as exc_info:
            await manager.acquire_page()
        assert exc_info.value.details["max_concurrent_pages"] == 2

        await first.release()
        third = await manager.acquire_page()
        assert manager.active_pages_count == 2
        await second.release()
        await third.release()

    @pytest.mark.asyncio
    async def test_concurrent_acquires_respect_ceiling(self, manager):
        results = await asyncio.gather(
            *(manager.acquire_page() for _ in range(5)),
            return_exceptions=True,
        )

        acquired = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, SessionUnavailable)]
        assert len(acquired) == 2
        assert len(rejected) == 3
        assert manager.active_pages_count == 2
        for scoped in acquired:
            await scoped.release()

    @pytest.mark.asyncio
    async def test_failed_page_creation_frees_slot(self, manager, browser):
        browser.new_context = AsyncMock(side_effect=RuntimeError("browser crashed"))

        with pytest.raises(SessionUnavailable) as exc_info:
            await manager.acquire_page()

        assert exc_info.value.details["error_type"] == "RuntimeError"
        assert manager.active_pages_count == 0


class TestScopedPage:
    """Release semantics."""

    @pytest.mark.asyncio
    async def test_release_closes_page_and_context(self, manager):
        scoped = await manager.acquire_page()

        await scoped.release()

        assert scoped.released
        assert scoped.page.closed
        assert scoped.context.closed
        assert manager.active_pages_count == 0

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, manager):
        first = await manager.acquire_page()
        second = await manager.acquire_page()

        await first.release()
        await first.release()

        assert manager.active_pages_count == 1
        await second.release()

    @pytest.mark.asyncio
    async def test_release_survives_close_errors(self, manager):
        scoped = await manager.acquire_page()
        scoped.page.close = AsyncMock(side_effect=RuntimeError("target closed"))

        await scoped.release()

        assert scoped.context.closed
        assert manager.active_pages_count == 0

    @pytest.mark.asyncio
    async def test_page_context_manager_releases_on_error(self, manager):
        with pytest.raises(ValueError):
            async with manager.page() as scoped:
                assert manager.active_pages_count == 1
                raise ValueError("job failed")

        assert scoped.released
        assert manager.active_pages_count == 0

    @pytest.mark.asyncio
    async def test_scoped_page_is_async_context_manager(self, manager):
        async with await manager.acquire_page() as scoped:
            assert not scoped.released
        assert scoped.released


class TestShutdown:
    """Draining and idempotent shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_closes_browser(self, manager, browser):
        await manager.shutdown()

        assert browser.closed
        assert manager.is_terminating
        assert not manager.is_active

    @pytest.mark.asyncio
    async def test_no_pages_after_shutdown(self, manager):
        await manager.shutdown()

        with pytest.raises(SessionUnavailable):
            await manager.acquire_page()

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, manager, browser):
        await asyncio.gather(manager.shutdown(), manager.shutdown())
        await manager.shutdown()

        assert browser.closed

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_outstanding_pages(self, browser):
        manager = BrowserSessionManager(
            max_concurrent_pages=2,
            thresholds=CrawlerThresholds(drain_timeout_seconds=5.0),
            browser=browser,
        )
        scoped = await manager.acquire_page()

        shutdown = asyncio.create_task(manager.shutdown())
        await asyncio.sleep(0.01)
        assert not shutdown.done()
        assert not browser.closed

        await scoped.release()
        await asyncio.wait_for(shutdown, timeout=1.0)
        assert browser.closed

    @pytest.mark.asyncio
    async def test_drain_timeout_closes_anyway(self, browser):
        manager = BrowserSessionManager(
            max_concurrent_pages=2,
            thresholds=CrawlerThresholds(drain_timeout_seconds=0.05),
            browser=browser,
        )
        scoped = await manager.acquire_page()

        await manager.shutdown()

        assert browser.closed
        await scoped.release()
        assert manager.active_pages_count == 0


class TestStatus:

    @pytest.mark.asyncio
    async def test_get_status(self, manager):
        scoped = await manager.acquire_page()
        status = manager.get_status()

        assert status.active
        assert status.active_pages == 1
        assert status.max_concurrent_pages == 2
        assert status.total_pages_opened == 1
        assert not status.is_terminating
        assert status.uptime_seconds >= 0
        await scoped.release()
