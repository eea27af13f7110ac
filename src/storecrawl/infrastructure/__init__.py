"""
Infrastructure Package.

Provides the browser session manager, the anti-detection bundle and page
navigation for crawl jobs.
"""

from .browser_session import (
    BrowserSessionManager,
    BrowserSessionStatus,
    ScopedPage,
)
from .navigator import (
    NavigationOutcome,
    PageNavigator,
)
from .stealth import (
    STEALTH_SCRIPTS,
    WEBGL_PROFILES,
    build_stealth_script,
)

__all__ = [
    # Browser session
    "BrowserSessionManager",
    "BrowserSessionStatus",
    "ScopedPage",
    # Navigation
    "NavigationOutcome",
    "PageNavigator",
    # Anti-detection bundle
    "STEALTH_SCRIPTS",
    "WEBGL_PROFILES",
    "build_stealth_script",
]
