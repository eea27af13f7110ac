"""Naver SmartStore extractor: review listings and product listings."""

from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bs4 import Tag

from storecrawl.crawl_config import CrawlJobConfig
from storecrawl.extractors.base import SiteExtractor
from storecrawl.models import ExtractedItem, SourceSite
from storecrawl.utils.text import clean_text, extract_number, extract_rating, parse_date, resolve_url


def set_query_params(url: str, **params) -> str:
    """Return ``url`` with the given query parameters replaced or added."""
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update({key: str(value) for key, value in params.items()})
    return urlunsplit(parts._replace(query=urlencode(query)))


def _image_urls(element: Tag, base_url: str) -> list:
    urls = []
    for img in element.select("img"):
        src = img.get("src") or img.get("data-src")
        if src and "icon" not in src and "sprite" not in src:
            urls.append(resolve_url(base_url, src))
    return urls


class SmartStoreExtractor(SiteExtractor):
    """
    SmartStore review and product listings.

    Reviews carry their native id in ``data-shp-contents-id`` (current
    markup) or ``data-review-id``; products in ``data-product-id`` or
    ``data-id``.
    """

    site = SourceSite.SMARTSTORE
    default_item_type = "review"
    supported_item_types = ("review", "product")

    item_selectors = {
        "review": [
            "li[data-shp-area='revlist.review']",
            "li[data-shp-contents-type='review']",
            ".review_list_item",
            ".reviewItems",
            "[data-testid='review-item']",
            ".review-item",
            "#REVIEW ul li",
        ],
        "product": [
            ".product_list_item",
            ".productItems",
            "[data-testid='product-item']",
            ".product-item",
        ],
    }
    container_selectors = {
        "review": ["#REVIEW", ".review_list", "[data-testid='review-list']"],
        "product": [".product_list", "[data-testid='product-list']"],
    }

    default_request_delay_ms = 1500
    reload_markers = ["상품이 존재하지 않습니다"]

    def build_page_url(self, start_url: str, page_number: int) -> str:
        return set_query_params(start_url, page=page_number)

    def parse_item(self, element: Tag, item_type: str, config: CrawlJobConfig,
                   base_url: str) -> Optional[ExtractedItem]:
        if item_type == "product":
            return self._parse_product(element, config, base_url)
        return self._parse_review(element, config, base_url)

    def _text(self, element: Tag, config: CrawlJobConfig, field_name: str, default: str) -> Optional[str]:
        found = self.select_one(element, config, field_name, default)
        if found is None:
            return None
        return clean_text(found.get_text(" ")) or None

    def _parse_review(self, element: Tag, config: CrawlJobConfig, base_url: str) -> Optional[ExtractedItem]:
        content = self._text(element, config, "content", ".review_content, .review-text, .content")

        rating_element = self.select_one(element, config, "rating", ".rating, .star-rating, .review-rating")
        rating = None
        if rating_element is not None:
            rating = extract_rating(rating_element.get_text(" ").strip() or rating_element.get("aria-label"))

        date_text = self._text(element, config, "review_date", ".review-date, .date, .created-at")
        review_date = parse_date(date_text)

        data = {
            "content": content,
            "rating": rating,
            "review_date": review_date.isoformat() if review_date else None,
            "reviewer_name": self._text(element, config, "reviewer_name", ".reviewer, .review-author, .user-name"),
            "is_verified": self.select_one(element, config, "is_verified", ".verified, .confirmed, .purchased") is not None,
            "image_urls": _image_urls(element, base_url),
        }
        if not content and rating is None:
            return None

        native_id = (
            element.get("data-shp-contents-id")
            or element.get("data-review-id")
            or element.get("id")
        )
        return ExtractedItem(item_type="review", data=data, native_id=native_id)

    def _parse_product(self, element: Tag, config: CrawlJobConfig, base_url: str) -> Optional[ExtractedItem]:
        title = self._text(element, config, "title", ".product-title, .title, .name, h3, h4")
        if not title:
            return None

        link = element.select_one("a[href]")
        rating_text = self._text(element, config, "rating", ".rating, .star-rating")
        data = {
            "title": title,
            "price": extract_number(self._text(element, config, "price", ".price, .current-price, .sale-price")),
            "original_price": extract_number(
                self._text(element, config, "original_price", ".original-price, .before-price, .regular-price")
            ),
            "discount": extract_number(self._text(element, config, "discount", ".discount, .sale-rate")),
            "rating": extract_rating(rating_text),
            "image_urls": _image_urls(element, base_url)[:1],
            "url": resolve_url(base_url, link.get("href")) if link is not None else None,
        }

        native_id = (
            (link.get("data-product-id") if link is not None else None)
            or element.get("data-id")
            or element.get("data-shp-contents-id")
        )
        return ExtractedItem(item_type="product", data=data, native_id=native_id)
