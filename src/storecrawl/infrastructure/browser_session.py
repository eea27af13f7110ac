"""
Browser Session Management.

This module owns one headless browser process and lends short-lived,
isolated pages to crawl jobs. Each page lives in its own browser context so
the anti-detection bundle (fingerprint, locale, headers) is applied once at
creation and never toggled afterwards.

The session is an explicitly owned object passed to whoever needs pages;
there is no module-level browser singleton.
"""

import asyncio
import itertools
import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from storecrawl.browser_config import STEALTH_LAUNCH_ARGS, StealthPageSettings, build_chrome_user_agent
from storecrawl.config import CrawlerThresholds, default_thresholds, settings
from storecrawl.exceptions import SessionUnavailable
from storecrawl.infrastructure.stealth import build_stealth_script

logger = logging.getLogger(__name__)


@dataclass
class BrowserSessionStatus:
    """Current status of the browser session."""
    active: bool
    active_pages: int
    max_concurrent_pages: int
    is_terminating: bool
    total_pages_opened: int
    uptime_seconds: float


class ScopedPage:
    """
    A page lent by the session manager.

    ``release()`` closes the page and its context and returns the slot to
    the session. It runs at most once and never raises.
    """

    def __init__(self, manager: "BrowserSessionManager", page_id: int, context, page,
                 settings: StealthPageSettings, fingerprint_seed: int):
        self._manager = manager
        self.page_id = page_id
        self.context = context
        self.page = page
        self.settings = settings
        self.fingerprint_seed = fingerprint_seed
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        if self._released:
            return
        self._released = True

        try:
            for name, target in (("page", self.page), ("context", self.context)):
                try:
                    await target.close()
                except Exception as e:
                    logger.warning(f"Error closing {name} for page {self.page_id}: {e}")
        finally:
            self._manager._release_slot(self.page_id)

    async def __aenter__(self) -> "ScopedPage":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()


class BrowserSessionManager:
    """
    Owns a browser process and lends scoped pages.

    Features:
    - Concurrent-page ceiling with atomic accounting
    - Anti-detection bundle applied per page at creation
    - Lazy browser launch on first acquisition
    - Draining, idempotent shutdown

    Usage:
        manager = BrowserSessionManager()
        async with manager.page(StealthPageSettings()) as scoped:
            await scoped.page.goto(url)
        await manager.shutdown()
    """

    def __init__(
        self,
        max_concurrent_pages: Optional[int] = None,
        headless: Optional[bool] = None,
        browser_type: Optional[str] = None,
        default_user_agent: Optional[str] = None,
        thresholds: Optional[CrawlerThresholds] = None,
        browser: Any = None,
    ):
        """
        Initialize browser session manager.

        Args:
            max_concurrent_pages: Ceiling on simultaneously open pages
            headless: Run the browser in headless mode
            browser_type: Playwright browser type ('chromium', 'firefox', 'webkit')
            default_user_agent: User agent for pages whose settings carry none
            thresholds: Drain timeout and other bounds
            browser: Already-launched browser to use instead of launching one
        """
        self.thresholds = thresholds or default_thresholds
        self.max_concurrent_pages = max_concurrent_pages or settings.MAX_CONCURRENT_PAGES
        self.headless = settings.HEADLESS if headless is None else headless
        self.browser_type = browser_type or settings.BROWSER_TYPE
        self.default_user_agent = default_user_agent or build_chrome_user_agent(settings.CHROME_VERSION)

        self._playwright = None
        self._browser = browser
        self._owns_playwright = False
        self._lock = asyncio.Lock()
        self._start_lock = asyncio.Lock()
        self._drained = asyncio.Event()
        self._drained.set()
        self._closed = asyncio.Event()
        self._active_pages = 0
        self._total_pages = 0
        self._page_ids = itertools.count(1)
        self._terminating = False
        self._start_time: Optional[datetime] = datetime.now() if browser is not None else None

    @property
    def is_terminating(self) -> bool:
        return self._terminating

    @property
    def active_pages_count(self) -> int:
        return self._active_pages

    @property
    def is_active(self) -> bool:
        return self._browser is not None and not self._closed.is_set()

    async def start(self) -> None:
        """Launch the browser if it is not running yet."""
        async with self._start_lock:
            if self._browser is not None:
                return
            if self._terminating:
                raise SessionUnavailable("Browser session is terminating")

            from playwright.async_api import async_playwright

            self._playwright = await async_playwright().start()
            self._owns_playwright = True
            launcher = getattr(self._playwright, self.browser_type)
            self._browser = await launcher.launch(
                headless=self.headless,
                args=STEALTH_LAUNCH_ARGS,
            )
            self._start_time = datetime.now()
            logger.info(
                f"Browser session started ({self.browser_type}, headless={self.headless}, "
                f"max_pages={self.max_concurrent_pages})"
            )

    async def _reserve_slot(self) -> int:
        async with self._lock:
            if self._terminating:
                raise SessionUnavailable(
                    "Browser session is terminating",
                    details={"active_pages": self._active_pages},
                )
            if self._active_pages >= self.max_concurrent_pages:
                raise SessionUnavailable(
                    f"Concurrent page ceiling reached ({self.max_concurrent_pages})",
                    details={
                        "active_pages": self._active_pages,
                        "max_concurrent_pages": self.max_concurrent_pages,
                    },
                )
            self._active_pages += 1
            self._drained.clear()
            return next(self._page_ids)

    def _release_slot(self, page_id: int) -> None:
        self._active_pages = max(self._active_pages - 1, 0)
        if self._active_pages == 0:
            self._drained.set()
        logger.debug(f"Released page {page_id} ({self._active_pages} active)")

    def _context_options(self, page_settings: StealthPageSettings) -> dict[str, Any]:
        return {
            "viewport": {
                "width": page_settings.viewport.width,
                "height": page_settings.viewport.height,
            },
            "user_agent": page_settings.user_agent or self.default_user_agent,
            "locale": page_settings.locale,
            "timezone_id": page_settings.timezone,
            "extra_http_headers": dict(page_settings.extra_headers),
            "java_script_enabled": True,
        }

    async def acquire_page(self, page_settings: Optional[StealthPageSettings] = None) -> ScopedPage:
        """
        Open a new isolated page with the anti-detection bundle applied.

        Args:
            page_settings: Fingerprint settings for the page

        Returns:
            ScopedPage; the caller must release it

        Raises:
            SessionUnavailable: Session terminating, at its ceiling, or the
                browser could not open a page
        """
        page_settings = page_settings or StealthPageSettings()
        page_id = await self._reserve_slot()

        context = None
        try:
            await self.start()
            seed = random.randrange(2**31)
            context = await self._browser.new_context(**self._context_options(page_settings))
            await context.add_init_script(script=build_stealth_script(page_settings, seed))
            page = await context.new_page()
        except SessionUnavailable:
            self._release_slot(page_id)
            raise
        except Exception as e:
            if context is not None:
                try:
                    await context.close()
                except Exception as close_error:
                    logger.debug(f"Error closing context after failed acquire: {close_error}")
            self._release_slot(page_id)
            raise SessionUnavailable(
                f"Could not open browser page: {e}",
                details={"error_type": type(e).__name__},
            ) from e

        self._total_pages += 1
        logger.debug(f"Acquired page {page_id} ({self._active_pages}/{self.max_concurrent_pages} active)")
        return ScopedPage(self, page_id, context, page, page_settings, seed)

    @asynccontextmanager
    async def page(self, page_settings: Optional[StealthPageSettings] = None):
        """
        Acquire a page for the duration of a block.

        Usage:
            async with manager.page() as scoped:
                await navigator.navigate(scoped.page, url)

        Yields:
            ScopedPage, released on every exit path
        """
        scoped = await self.acquire_page(page_settings)
        try:
            yield scoped
        finally:
            await scoped.release()

    async def shutdown(self) -> None:
        """
        Stop lending pages, wait for outstanding pages, then close the browser.

        Idempotent; concurrent callers all return once the browser is closed.
        """
        if self._terminating:
            await self._closed.wait()
            return
        self._terminating = True
        logger.info(f"Shutting down browser session ({self._active_pages} pages outstanding)")

        try:
            await asyncio.wait_for(self._drained.wait(), timeout=self.thresholds.drain_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"Drain timeout after {self.thresholds.drain_timeout_seconds}s; "
                f"closing browser with {self._active_pages} pages outstanding"
            )

        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")

        if self._playwright is not None and self._owns_playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")

        self._playwright = None
        self._closed.set()
        logger.info("Browser session shut down")

    def get_status(self) -> BrowserSessionStatus:
        """Get current session status."""
        uptime = 0.0
        if self._start_time:
            uptime = (datetime.now() - self._start_time).total_seconds()

        return BrowserSessionStatus(
            active=self.is_active,
            active_pages=self._active_pages,
            max_concurrent_pages=self.max_concurrent_pages,
            is_terminating=self._terminating,
            total_pages_opened=self._total_pages,
            uptime_seconds=uptime,
        )
