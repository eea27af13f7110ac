"""
Site Extractors Package.

One extractor variant per supported site. Adding a site means adding a
variant to ``EXTRACTORS``.
"""

from typing import Any, Dict, Union

from storecrawl.exceptions import UnsupportedSite
from storecrawl.models import SourceSite

from .base import SiteExtractor, apply_filters, passes_filters
from .naver_blog import NaverBlogExtractor
from .smartstore import SmartStoreExtractor

EXTRACTORS = {
    SourceSite.SMARTSTORE: SmartStoreExtractor,
    SourceSite.NAVER_BLOG: NaverBlogExtractor,
}


def resolve_site(site: Union[str, SourceSite]) -> SourceSite:
    """
    Raises:
        UnsupportedSite: Unknown site identifier
    """
    if isinstance(site, SourceSite):
        return site
    try:
        return SourceSite(str(site).upper())
    except ValueError:
        raise UnsupportedSite(
            f"Unsupported site: {site}",
            details={"supported_sites": supported_sites()},
        )


def get_extractor(site: Union[str, SourceSite]) -> SiteExtractor:
    """Create the extractor for a site."""
    source_site = resolve_site(site)
    extractor_cls = EXTRACTORS.get(source_site)
    if extractor_cls is None:
        raise UnsupportedSite(f"No extractor registered for {source_site.value}")
    return extractor_cls()


def supported_sites() -> list:
    return [site.value for site in EXTRACTORS]


def with_site_defaults(payload: Dict[str, Any], extractor: SiteExtractor) -> Dict[str, Any]:
    """Fill configuration keys the caller left out with the site's defaults."""
    merged = dict(payload or {})
    for key, value in extractor.default_options().items():
        snake_key = "".join(f"_{c.lower()}" if c.isupper() else c for c in key)
        if key not in merged and snake_key not in merged:
            merged[key] = value
    return merged


__all__ = [
    "EXTRACTORS",
    "SiteExtractor",
    "SmartStoreExtractor",
    "NaverBlogExtractor",
    "apply_filters",
    "passes_filters",
    "get_extractor",
    "resolve_site",
    "supported_sites",
    "with_site_defaults",
]
