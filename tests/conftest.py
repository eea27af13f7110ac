"""Shared fixtures: in-memory store, job service and an in-process fake browser."""

from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from storecrawl.config import CrawlerThresholds
from storecrawl.database import LocalSqliteCrawlStore
from storecrawl.job_service import CrawlJobService
from storecrawl.license import LicenseStatus, StaticLicenseGate


# =============================================================================
# Fake browser
# =============================================================================

class FakeResponse:
    def __init__(self, status=200):
        self.status = status

    @property
    def ok(self):
        return 200 <= self.status < 300


class FakeMouse:
    def __init__(self):
        self.moves = []

    async def move(self, x, y):
        self.moves.append((x, y))


class FakeSite:
    """Serves pages from a handler: url -> html | (status, html) | exception."""

    def __init__(self, handler):
        self.handler = handler
        self.navigations = []

    def respond(self, url):
        self.navigations.append(url)
        value = self.handler(url)
        if isinstance(value, BaseException):
            raise value
        if isinstance(value, tuple):
            return value
        return 200, value


class FakePage:
    def __init__(self, site):
        self.site = site
        self.url = "about:blank"
        self.viewport_size = {"width": 1920, "height": 1080}
        self.mouse = FakeMouse()
        self.goto_calls = []
        self.reload_calls = 0
        self.closed = False
        self._html = ""

    async def goto(self, url, wait_until=None, timeout=None, referer=None):
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout, "referer": referer})
        status, html = self.site.respond(url)
        self.url = url
        self._html = html
        return FakeResponse(status)

    async def reload(self, wait_until=None, timeout=None):
        self.reload_calls += 1
        status, html = self.site.respond(self.url)
        self._html = html
        return FakeResponse(status)

    async def content(self):
        return self._html

    async def evaluate(self, expression):
        return None

    async def close(self):
        self.closed = True


class FakeContext:
    def __init__(self, browser, options):
        self.browser = browser
        self.options = options
        self.init_scripts = []
        self.pages = []
        self.closed = False

    async def add_init_script(self, script=None, path=None):
        self.init_scripts.append(script)

    async def new_page(self):
        page = FakePage(self.browser.site)
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, site=None):
        self.site = site or FakeSite(lambda url: "<html><body></body></html>")
        self.contexts = []
        self.closed = False

    async def new_context(self, **options):
        context = FakeContext(self, options)
        self.contexts.append(context)
        return context

    async def close(self):
        self.closed = True


def page_param(url, name="page", default=1):
    values = parse_qs(urlsplit(url).query).get(name)
    return int(values[0]) if values else default


def build_review_page(reviews):
    """SmartStore-style review listing.

    Args:
        reviews: iterable of (review_id, rating, text) tuples
    """
    rows = []
    for review_id, rating, text in reviews:
        id_attr = f' data-review-id="{review_id}"' if review_id else ""
        rows.append(
            f'<li class="review_list_item"{id_attr}>'
            f'<div class="rating">{rating}</div>'
            f'<p class="review_content">{text}</p>'
            f'<span class="reviewer">buyer_{review_id}</span>'
            f'<span class="review-date">2024.03.15.</span>'
            f'</li>'
        )
    return (
        '<html><body><div id="REVIEW"><ul class="review_list">'
        + "".join(rows)
        + "</ul></div></body></html>"
    )


def listing_page(page_number, per_page=5, prefix="r"):
    return build_review_page(
        (f"{prefix}{page_number}-{i}", 5, f"Review {i} on page {page_number}")
        for i in range(1, per_page + 1)
    )


BLOCK_PAGE = '<html><body><img class="captcha_img" alt="보안문자"></body></html>'


class RecordingLicenseGate(StaticLicenseGate):
    """Static gate that remembers lookups and raises ``error`` when one is set."""

    def __init__(self, statuses=None, default=None, error=None):
        super().__init__(statuses, default)
        self.error = error
        self.calls = []

    async def check_license(self, user_email):
        self.calls.append(user_email)
        if self.error is not None:
            raise self.error
        return await super().check_license(user_email)


class FakeClock:
    """Deterministic clock that advances by ``step`` on every call."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)
        self.step = step

    def __call__(self):
        current = self.now
        self.now = self.now + self.step
        return current


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def store():
    """In-memory crawl store."""
    crawl_store = LocalSqliteCrawlStore("sqlite:///:memory:")
    yield crawl_store
    crawl_store.close()


@pytest.fixture
def license_gate():
    """Every user holds a lifetime license unless overridden."""
    return StaticLicenseGate(default=LicenseStatus(active=True))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def job_service(store, license_gate, clock):
    return CrawlJobService(store, license_gate, clock=clock)


@pytest.fixture
def fast_thresholds():
    """Thresholds with human simulation disabled and a short drain timeout."""
    return CrawlerThresholds(
        human_sim_fast_mode=True,
        consecutive_failure_threshold=3,
        session_acquire_attempts=3,
        session_backoff_base_seconds=2.0,
        session_backoff_max_seconds=30.0,
        drain_timeout_seconds=0.5,
    )


@pytest.fixture
def make_browser():
    """Factory: handler(url) -> FakeBrowser serving that handler."""
    def _make(handler):
        return FakeBrowser(FakeSite(handler))
    return _make


@pytest.fixture
def make_page():
    """Factory: handler(url) -> standalone FakePage."""
    def _make(handler):
        return FakePage(FakeSite(handler))
    return _make


@pytest.fixture
def review_page():
    return build_review_page


@pytest.fixture
def listing():
    """Factory for a full listing page: listing(page_number, per_page=5, prefix='r')."""
    return listing_page


@pytest.fixture
def block_page():
    return BLOCK_PAGE


@pytest.fixture
def page_number_of():
    return page_param


@pytest.fixture
def make_license_gate():
    """Factory: make_license_gate(statuses, default=None, error=None) -> recording gate."""
    return RecordingLicenseGate
