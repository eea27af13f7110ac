"""
Human-like pacing simulator for page navigation.

Features:
- Randomized pause before each navigation
- Randomized settle delay after the page has loaded
- Mouse hovers over fixed viewport regions
- Stepped scrolling with per-step jitter
- Fast mode for skipping all human simulation
"""

import asyncio
import random
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class HumanSimulatorConfig:
    """Configuration for human-like navigation pacing."""

    # Delay bounds (seconds)
    min_pre_nav_delay: float = 0.5
    max_pre_nav_delay: float = 1.4
    min_post_load_delay: float = 0.7
    max_post_load_delay: float = 1.2

    # Hover dwell per point (milliseconds)
    min_hover_ms: int = 16
    max_hover_ms: int = 142

    # Scroll configuration
    scroll_steps: int = 5
    min_scroll_px: int = 66
    max_scroll_px: int = 99

    # Mode flags
    fast_mode: bool = False  # Skip all human simulation when True


# Hover points as fractions of the viewport (x, y)
HOVER_POINTS = [
    (0.6, 0.3),
    (0.4, 0.4),
    (0.5, 0.2),
]


class HumanSimulator:
    """
    Simulates human-like pacing around page navigation.

    Usage:
        simulator = HumanSimulator()

        await simulator.pre_navigation_delay()
        await page.goto(url)
        await simulator.simulate_post_load(page)
    """

    def __init__(self, config: Optional[HumanSimulatorConfig] = None, seed: Optional[int] = None):
        """
        Initialize the human simulator.

        Args:
            config: Configuration options. Uses defaults if not provided.
            seed: Optional RNG seed for reproducible delays
        """
        self.config = config or HumanSimulatorConfig()
        self._rng = random.Random(seed)

    @property
    def enabled(self) -> bool:
        return not self.config.fast_mode

    async def _random_pause(self, low: float, high: float, reason: str) -> float:
        if self.config.fast_mode:
            return 0.0
        duration = self._rng.uniform(low, high)
        logger.debug(f"Human pause ({reason}): {duration:.2f}s")
        await asyncio.sleep(duration)
        return duration

    async def pre_navigation_delay(self) -> float:
        """
        Pause before starting a navigation.

        Returns:
            Actual pause duration in seconds
        """
        return await self._random_pause(
            self.config.min_pre_nav_delay,
            self.config.max_pre_nav_delay,
            "pre-navigation",
        )

    async def post_load_delay(self) -> float:
        """Pause after the page reports loaded."""
        return await self._random_pause(
            self.config.min_post_load_delay,
            self.config.max_post_load_delay,
            "post-load",
        )

    async def hover_pattern(self, page) -> int:
        """
        Move the mouse over a fixed set of viewport regions.

        Args:
            page: Playwright page object

        Returns:
            Number of hover points visited
        """
        if self.config.fast_mode:
            return 0

        viewport = page.viewport_size
        width = viewport['width'] if viewport else 1920
        height = viewport['height'] if viewport else 1080

        for x_ratio, y_ratio in HOVER_POINTS:
            await page.mouse.move(width * x_ratio, height * y_ratio)
            dwell_ms = self._rng.uniform(self.config.min_hover_ms, self.config.max_hover_ms)
            await asyncio.sleep(dwell_ms / 1000.0)

        return len(HOVER_POINTS)

    async def scroll_like_human(
        self,
        page,
        direction: str = "down",
    ) -> int:
        """
        Scroll the page with human-like behavior.

        Args:
            page: Playwright page object
            direction: "up" or "down"

        Returns:
            Total scrolled distance in pixels
        """
        sign = -1 if direction == "up" else 1

        if self.config.fast_mode:
            amount = self.config.scroll_steps * self.config.max_scroll_px
            await page.evaluate(f"window.scrollBy(0, {sign * amount})")
            return amount

        total = 0
        for _ in range(self.config.scroll_steps):
            step = self._rng.randint(self.config.min_scroll_px, self.config.max_scroll_px)
            await page.evaluate(f"window.scrollBy(0, {sign * step})")
            total += step
            await asyncio.sleep(self._rng.uniform(0.05, 0.15))

        logger.debug(f"Scrolled {direction} {total}px in {self.config.scroll_steps} steps")
        return total

    async def simulate_post_load(self, page) -> None:
        """Settle delay, hovers and a short scroll after a page load."""
        if self.config.fast_mode:
            return
        await self.post_load_delay()
        await self.hover_pattern(page)
        await self.scroll_like_human(page)


def create_human_simulator(fast_mode: bool = False, seed: Optional[int] = None) -> HumanSimulator:
    """
    Create a configured HumanSimulator instance.

    Args:
        fast_mode: Skip all human simulation (for testing)
        seed: Optional RNG seed

    Returns:
        Configured HumanSimulator instance
    """
    return HumanSimulator(HumanSimulatorConfig(fast_mode=fast_mode), seed=seed)


def create_human_simulator_from_thresholds(thresholds) -> HumanSimulator:
    """
    Create a HumanSimulator from CrawlerThresholds configuration.

    This allows all human simulation parameters to be configured via
    config.py or environment variables (STORECRAWL_THRESHOLD_HUMAN_SIM_*).

    Args:
        thresholds: CrawlerThresholds instance with human_sim_* fields

    Returns:
        Configured HumanSimulator instance
    """
    config = HumanSimulatorConfig(
        min_pre_nav_delay=getattr(thresholds, 'human_sim_min_pre_nav_delay', 0.5),
        max_pre_nav_delay=getattr(thresholds, 'human_sim_max_pre_nav_delay', 1.4),
        min_post_load_delay=getattr(thresholds, 'human_sim_min_post_load_delay', 0.7),
        max_post_load_delay=getattr(thresholds, 'human_sim_max_post_load_delay', 1.2),
        min_hover_ms=getattr(thresholds, 'human_sim_min_hover_ms', 16),
        max_hover_ms=getattr(thresholds, 'human_sim_max_hover_ms', 142),
        scroll_steps=getattr(thresholds, 'human_sim_scroll_steps', 5),
        min_scroll_px=getattr(thresholds, 'human_sim_min_scroll_px', 66),
        max_scroll_px=getattr(thresholds, 'human_sim_max_scroll_px', 99),
        fast_mode=getattr(thresholds, 'human_sim_fast_mode', False),
    )
    return HumanSimulator(config)
