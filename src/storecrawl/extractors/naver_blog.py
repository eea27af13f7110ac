"""Naver Blog extractor: post list rows of a blog or blog category."""

from typing import Optional
from urllib.parse import parse_qs, urlsplit

from bs4 import Tag

from storecrawl.crawl_config import CrawlJobConfig
from storecrawl.extractors.base import SiteExtractor
from storecrawl.extractors.smartstore import set_query_params
from storecrawl.models import ExtractedItem, SourceSite
from storecrawl.utils.text import clean_text, extract_number, parse_date, resolve_url

BLOG_BASE_URL = "https://blog.naver.com"

# Posts shown per list page
POSTS_PER_PAGE = 5


def post_id_from_url(url: str) -> Optional[str]:
    """logNo of a post URL (query form or /blogId/logNo path form)."""
    parts = urlsplit(url)
    log_no = parse_qs(parts.query).get("logNo")
    if log_no:
        return log_no[0]
    segments = [segment for segment in parts.path.split("/") if segment]
    if len(segments) >= 2 and segments[-1].isdigit():
        return segments[-1]
    return None


class NaverBlogExtractor(SiteExtractor):
    """Post list pages (``PostList.naver``) of a Naver blog."""

    site = SourceSite.NAVER_BLOG
    default_item_type = "post"
    supported_item_types = ("post",)

    item_selectors = {"post": ["#postBottomTitleListBody tr"]}
    container_selectors = {"post": ["#postBottomTitleListBody", "#postListBody"]}

    def build_page_url(self, start_url: str, page_number: int) -> str:
        start_index = (page_number - 1) * POSTS_PER_PAGE + 1
        return set_query_params(start_url, currentPage=page_number, startIndex=start_index)

    def parse_item(self, element: Tag, item_type: str, config: CrawlJobConfig,
                   base_url: str) -> Optional[ExtractedItem]:
        link = element.select_one("a[href]")
        if link is None:
            return None
        href = link["href"]
        if "PostList" in href:
            return None

        title_element = self.select_one(element, config, "title", ".title") or link
        title = clean_text(title_element.get_text(" "))
        if not title:
            return None

        url = resolve_url(BLOG_BASE_URL, href)
        comment_element = self.select_one(element, config, "comment_count", ".meta_data .num.pcol3, .num.pcol3")
        comment_count = None
        if comment_element is not None:
            comment_count = extract_number(comment_element.get_text().replace("(", "").replace(")", ""))

        date_element = self.select_one(element, config, "publish_date", ".date, .se_publishDate")
        publish_date = parse_date(date_element.get_text()) if date_element is not None else None

        thumbnail = element.select_one("img")
        data = {
            "title": title,
            "url": url,
            "publish_date": publish_date.isoformat() if publish_date else None,
            "comment_count": comment_count,
            "author": None,
            "thumbnail_url": resolve_url(BLOG_BASE_URL, thumbnail.get("src")) if thumbnail is not None else None,
        }
        author_element = self.select_one(element, config, "author", ".nick, .author")
        if author_element is not None:
            data["author"] = clean_text(author_element.get_text()) or None

        return ExtractedItem(item_type="post", data=data, native_id=post_id_from_url(url))
