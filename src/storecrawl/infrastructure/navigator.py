"""
Page navigation.

Loads a URL into a page with a configurable wait strategy, optional
human-like pacing and referer/timeout control, and maps driver failures
onto ``NavigationTimeout`` / ``NavigationError``.
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from storecrawl.browser_config import PageNavigationOptions
from storecrawl.exceptions import NavigationError, NavigationTimeout
from storecrawl.utils.human_simulator import HumanSimulator

logger = logging.getLogger(__name__)


@dataclass
class NavigationOutcome:
    """Result of a completed navigation."""
    url: str
    final_url: str
    status: Optional[int]
    elapsed_ms: int
    reloaded: bool = False

    @property
    def ok(self) -> bool:
        return self.status is None or 200 <= self.status < 300


class PageNavigator:
    """
    Navigates pages and waits until they are ready for extraction.

    Usage:
        navigator = PageNavigator(human_simulator=create_human_simulator(fast_mode=True))
        outcome = await navigator.navigate(page, url, PageNavigationOptions())
    """

    def __init__(
        self,
        human_simulator: Optional[HumanSimulator] = None,
        reload_markers: Optional[Iterable[str]] = None,
    ):
        """
        Initialize the navigator.

        Args:
            human_simulator: Pacing simulator; a default one is created if omitted
            reload_markers: Texts that, when present after load, trigger one reload
        """
        self.human_simulator = human_simulator or HumanSimulator()
        self.reload_markers = list(reload_markers or [])

    async def _load(self, action, url: str, options: PageNavigationOptions):
        try:
            return await action()
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(
                f"Timed out after {options.timeout}ms waiting for '{options.wait_strategy}' on {url}",
                details={"url": url, "wait_strategy": options.wait_strategy, "timeout_ms": options.timeout},
            ) from e
        except PlaywrightError as e:
            raise NavigationError(
                f"Navigation to {url} failed: {e.message}",
                details={"url": url},
            ) from e

    async def _has_reload_marker(self, page) -> bool:
        if not self.reload_markers:
            return False
        try:
            html = await page.content()
        except PlaywrightError as e:
            logger.debug(f"Could not read page content for reload check: {e}")
            return False
        return any(marker in html for marker in self.reload_markers)

    async def navigate(
        self,
        page,
        url: str,
        options: Optional[PageNavigationOptions] = None,
    ) -> NavigationOutcome:
        """
        Navigate to a URL and wait for the configured readiness condition.

        Args:
            page: Playwright page object
            url: URL to load
            options: Wait strategy, timeout, referer and pacing options

        Returns:
            NavigationOutcome

        Raises:
            NavigationTimeout: Wait condition not met within the timeout
            NavigationError: Transport failure, or non-2xx when success is required
        """
        options = options or PageNavigationOptions()
        simulate = options.simulate_human_behavior and self.human_simulator.enabled

        if simulate:
            await self.human_simulator.pre_navigation_delay()

        start = time.monotonic()
        response = await self._load(
            lambda: page.goto(
                url,
                wait_until=options.wait_strategy,
                timeout=options.timeout,
                referer=options.referer,
            ),
            url,
            options,
        )

        reloaded = False
        if await self._has_reload_marker(page):
            logger.info(f"Reload marker found on {url}; reloading once")
            reloaded = True
            response = await self._load(
                lambda: page.reload(wait_until=options.wait_strategy, timeout=options.timeout),
                url,
                options,
            )

        status = response.status if response is not None else None
        if options.require_success and response is not None and not response.ok:
            raise NavigationError(
                f"HTTP {status} for {url}",
                status_code=status,
                details={"url": url, "status": status},
            )

        if simulate:
            await self.human_simulator.simulate_post_load(page)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug(f"Navigated to {url} (status={status}, {elapsed_ms}ms)")
        return NavigationOutcome(
            url=url,
            final_url=page.url or url,
            status=status,
            elapsed_ms=elapsed_ms,
            reloaded=reloaded,
        )
