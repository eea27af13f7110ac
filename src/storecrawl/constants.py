# src/storecrawl/constants.py
"""Centralized constants for the crawl-job engine.

This module contains magic numbers and fixed values that are used across
multiple modules. For user-configurable bounds, see config.py and
CrawlerThresholds.
"""

# =============================================================================
# Job Constants
# =============================================================================

# Default job priority (1 = highest, 10 = lowest)
DEFAULT_JOB_PRIORITY = 5

# Hard ceiling on pages per job regardless of configuration
MAX_PAGES_CEILING = 50

# Default page budget for a paginated job
DEFAULT_MAX_PAGES = 10

# Default item budget for a job
DEFAULT_MAX_ITEMS = 2000

# Default pause between consecutive page navigations (milliseconds)
DEFAULT_REQUEST_DELAY_MS = 1000

# Default page size for job listings
DEFAULT_LIST_LIMIT = 20

# Number of recent jobs included in statistics
RECENT_JOBS_COUNT = 5


# =============================================================================
# Error Codes
# =============================================================================

ERROR_SITE_BLOCKED = "SITE_BLOCKED"
ERROR_CONSECUTIVE_FAILURES = "CONSECUTIVE_FAILURES"
ERROR_SESSION_UNAVAILABLE = "SESSION_UNAVAILABLE"
ERROR_INTERNAL = "INTERNAL_ERROR"


# =============================================================================
# Browser Constants
# =============================================================================

# Default maximum concurrently open pages per browser session
DEFAULT_MAX_CONCURRENT_PAGES = 3

# Default Chrome version used to build the default user agent
DEFAULT_CHROME_VERSION = "139.0.0.0"

# Desktop viewport dimensions
DESKTOP_VIEWPORT_WIDTH = 1920
DESKTOP_VIEWPORT_HEIGHT = 1080

# Default navigation timeout in milliseconds
DEFAULT_NAVIGATION_TIMEOUT_MS = 60000


# =============================================================================
# Quality Scoring Weights
# =============================================================================

# Field importance per item type. Scores are the weighted fraction of
# expected fields that are present on an extracted item.
QUALITY_FIELD_WEIGHTS = {
    "review": {
        "content": 3.0,
        "rating": 3.0,
        "review_date": 2.0,
        "reviewer_name": 1.0,
        "is_verified": 0.5,
        "image_urls": 0.5,
    },
    "product": {
        "title": 3.0,
        "price": 3.0,
        "rating": 2.0,
        "url": 1.5,
        "original_price": 1.0,
        "discount": 0.5,
        "image_urls": 0.5,
    },
    "post": {
        "title": 3.0,
        "url": 3.0,
        "publish_date": 2.0,
        "comment_count": 1.0,
        "author": 1.0,
        "thumbnail_url": 0.5,
    },
}

# Fallback weights for item types without an explicit profile
DEFAULT_QUALITY_WEIGHTS = {
    "title": 2.0,
    "content": 2.0,
    "url": 1.0,
}
