"""
Site extractor interface.

An extractor turns one loaded listing page into typed items plus a
continuation signal. It applies the job's filters and item/page caps but
never touches the job record; the runner hands its output to ingestion.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup, Tag

from storecrawl.crawl_config import CrawlFilters, CrawlJobConfig
from storecrawl.exceptions import ExtractionError, ExtractionFatal, InvalidJobConfig
from storecrawl.models import ExtractedItem, PageExtraction, SourceSite
from storecrawl.utils.challenge_handler import detect_block_page

logger = logging.getLogger(__name__)

# Item fields holding the date compared against filters.dateRange
DATE_FIELDS = ("review_date", "publish_date")


def _item_date(item: ExtractedItem) -> Optional[date]:
    for field_name in DATE_FIELDS:
        value = item.data.get(field_name)
        if value:
            try:
                return date.fromisoformat(str(value)[:10])
            except ValueError:
                return None
    return None


def passes_filters(item: ExtractedItem, filters: CrawlFilters) -> bool:
    """Check an item against the job filters.

    An item lacking the field a filter looks at is kept.
    """
    rating = item.data.get("rating")
    if filters.rating and rating is not None:
        if filters.rating.min is not None and rating < filters.rating.min:
            return False
        if filters.rating.max is not None and rating > filters.rating.max:
            return False

    if filters.date_range:
        item_date = _item_date(item)
        if item_date is not None:
            if filters.date_range.from_date and item_date < filters.date_range.from_date:
                return False
            if filters.date_range.to_date and item_date > filters.date_range.to_date:
                return False

    text = item.searchable_text()
    if text:
        if filters.keywords and not any(k.lower() in text for k in filters.keywords):
            return False
        if filters.exclude_keywords and any(k.lower() in text for k in filters.exclude_keywords):
            return False

    return True


def apply_filters(items: Sequence[ExtractedItem], filters: CrawlFilters) -> List[ExtractedItem]:
    return [item for item in items if passes_filters(item, filters)]


class SiteExtractor(ABC):
    """Base class for one supported site."""

    site: SourceSite
    default_item_type: str
    supported_item_types: tuple = ()

    # Listing containers; a matched container with no items means exhausted
    container_selectors: Dict[str, List[str]] = {}
    # Item rows, tried in order until one matches
    item_selectors: Dict[str, List[str]] = {}

    # Pacing and navigation defaults for this site
    default_request_delay_ms: int = 1000
    reload_markers: List[str] = []

    def resolve_item_type(self, config: CrawlJobConfig) -> str:
        return config.item_type or self.default_item_type

    def validate_config(self, config: CrawlJobConfig) -> None:
        """Reject configurations this site cannot run.

        Raises:
            InvalidJobConfig: Unsupported item type or start URL
        """
        item_type = self.resolve_item_type(config)
        if item_type not in self.supported_item_types:
            raise InvalidJobConfig(
                f"{self.site.value} does not list '{item_type}' items",
                details={"supported_item_types": list(self.supported_item_types)},
            )
        if not config.start_url.startswith(("http://", "https://")):
            raise InvalidJobConfig(
                "startUrl must be an http(s) URL",
                details={"start_url": config.start_url},
            )

    def default_options(self) -> Dict[str, Any]:
        """Configuration defaults applied before user-supplied values."""
        return {"requestDelay": self.default_request_delay_ms}

    @abstractmethod
    def build_page_url(self, start_url: str, page_number: int) -> str:
        """URL of the given 1-based listing page."""

    @abstractmethod
    def parse_item(self, element: Tag, item_type: str, config: CrawlJobConfig,
                   base_url: str) -> Optional[ExtractedItem]:
        """Parse one row; None for rows that are not real items."""

    def _selectors(self, config: CrawlJobConfig, key: str, defaults: List[str]) -> List[str]:
        override = config.selectors.get(key)
        return [override] if override else defaults

    def select_one(self, element: Tag, config: CrawlJobConfig, field_name: str, default: str) -> Optional[Tag]:
        """select_one honouring a per-field selector override."""
        return element.select_one(config.selectors.get(field_name) or default)

    def find_item_elements(self, soup: BeautifulSoup, config: CrawlJobConfig,
                           item_type: str) -> Optional[List[Tag]]:
        """
        Locate item rows.

        Returns:
            Matched rows, an empty list when only the listing container is
            present, or None when the page does not look like a listing.
        """
        for selector in self._selectors(config, "item", self.item_selectors.get(item_type, [])):
            elements = soup.select(selector)
            if elements:
                return elements

        for selector in self._selectors(config, "container", self.container_selectors.get(item_type, [])):
            if soup.select_one(selector) is not None:
                return []

        return None

    async def extract_page(
        self,
        page,
        config: CrawlJobConfig,
        page_number: int,
        remaining_items: int,
        status: Optional[int] = None,
    ) -> PageExtraction:
        """
        Extract one listing page from a loaded browser page.

        Args:
            page: Playwright page that has finished loading
            config: Job configuration
            page_number: 1-based page number
            remaining_items: Items the job may still persist
            status: Main document HTTP status, if known

        Raises:
            ExtractionError: Page structure did not match
            ExtractionFatal: Page is a block/deny page
        """
        html = await page.content()
        return self.extract_html(html, config, page_number, remaining_items, url=page.url, status=status)

    def extract_html(
        self,
        html: str,
        config: CrawlJobConfig,
        page_number: int,
        remaining_items: int,
        url: Optional[str] = None,
        status: Optional[int] = None,
    ) -> PageExtraction:
        """Extract one listing page from its HTML. See ``extract_page``."""
        soup = BeautifulSoup(html, "html.parser")
        url = url or self.build_page_url(config.start_url, page_number)

        block = detect_block_page(soup, url=url, status=status)
        if block.blocked:
            raise ExtractionFatal(
                f"{self.site.value} denied access on page {page_number}",
                details={"url": url, "page_number": page_number, **block.to_dict()},
            )

        item_type = self.resolve_item_type(config)
        elements = self.find_item_elements(soup, config, item_type)
        if elements is None:
            raise ExtractionError(
                f"No {item_type} listing found on page {page_number}",
                details={"url": url, "page_number": page_number, "item_type": item_type},
            )

        candidates = []
        for element in elements:
            item = self.parse_item(element, item_type, config, url)
            if item is not None:
                candidates.append(item)

        kept = apply_filters(candidates, config.filters)
        budget = max(remaining_items, 0)
        items = kept[:budget]

        exhausted = not candidates
        budget_reached = len(items) >= budget
        last_page = page_number >= config.max_pages
        has_next = not (exhausted or budget_reached or last_page)

        logger.debug(
            f"{self.site.value} page {page_number}: {len(candidates)} candidates, "
            f"{len(candidates) - len(kept)} filtered, {len(items)} kept, has_next={has_next}"
        )

        return PageExtraction(
            items=items,
            has_next=has_next,
            next_cursor=self.build_page_url(config.start_url, page_number + 1) if has_next else None,
            candidates_found=len(candidates),
            filtered_out=len(candidates) - len(kept),
        )
