"""
Browser configuration for stealth page creation and navigation.

This module provides validated Pydantic models for the anti-detection bundle
applied when a page is created, and for per-navigation options.
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from storecrawl.constants import (
    DEFAULT_CHROME_VERSION,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DESKTOP_VIEWPORT_HEIGHT,
    DESKTOP_VIEWPORT_WIDTH,
)


def build_chrome_user_agent(chrome_version: str = DEFAULT_CHROME_VERSION) -> str:
    """Build a desktop Chrome user agent for the given version."""
    return (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        f"(KHTML, like Gecko) Chrome/{chrome_version} Safari/537.36"
    )


# Headers a real Chrome sends on a top-level navigation
DEFAULT_EXTRA_HEADERS = {
    "Accept-Language": "ko-KR,ko;q=0.9,en;q=0.8",
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
        "image/webp,image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
    ),
    "Cache-Control": "max-age=0",
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

# Launch arguments that remove the most common automation signals
STEALTH_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--no-first-run",
    "--no-default-browser-check",
]


class Viewport(BaseModel):
    width: int = Field(default=DESKTOP_VIEWPORT_WIDTH, ge=320, le=7680)
    height: int = Field(default=DESKTOP_VIEWPORT_HEIGHT, ge=240, le=4320)


class AntiDetectionFeatures(BaseModel):
    """Fixed countermeasures applied when a page is created."""

    model_config = ConfigDict(frozen=True)

    spoof_webdriver: bool = True
    mask_automation_signals: bool = True
    simulate_plugins: bool = True
    randomize_fingerprint: bool = True


class StealthPageSettings(BaseModel):
    """
    Fingerprint and header settings for a new page.

    Settings are applied once at page creation; they are never toggled while
    a page is navigating.
    """

    model_config = ConfigDict(frozen=True)

    viewport: Viewport = Field(default_factory=Viewport)
    user_agent: Optional[str] = Field(
        default=None,
        description="Custom user agent. If None, the session's default user agent is used."
    )
    locale: str = "ko-KR"
    timezone: str = "Asia/Seoul"
    extra_headers: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_EXTRA_HEADERS))
    features: AntiDetectionFeatures = Field(default_factory=AntiDetectionFeatures)

    @property
    def languages(self) -> List[str]:
        """navigator.languages derived from the locale."""
        primary = self.locale.split("-")[0]
        langs = [self.locale]
        if primary != self.locale:
            langs.append(primary)
        if primary != "en":
            langs.extend(["en-US", "en"])
        return langs


class PageNavigationOptions(BaseModel):
    """Options for a single navigation."""

    wait_strategy: Literal["load", "domcontentloaded", "networkidle"] = Field(
        default="domcontentloaded",
        description="When to consider navigation complete"
    )

    timeout: int = Field(
        default=DEFAULT_NAVIGATION_TIMEOUT_MS,
        description="Navigation timeout in milliseconds",
        ge=1000,
        le=300000
    )

    referer: Optional[str] = None

    simulate_human_behavior: bool = Field(
        default=False,
        description="Add randomized micro-delays, hovers and scrolls around navigation"
    )

    require_success: bool = Field(
        default=True,
        description="Treat non-2xx main document responses as navigation errors"
    )
