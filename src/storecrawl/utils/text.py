"""Text helpers shared by the site extractors."""

import re
from datetime import date, datetime
from typing import Optional, Union
from urllib.parse import urljoin

_WHITESPACE = re.compile(r"\s+")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")

# 2024.03.15 / 2024-03-15 / 2024/03/15 / 2024년 3월 15일
_FULL_DATE = re.compile(r"(\d{4})\s*[.\-/년]\s*(\d{1,2})\s*[.\-/월]\s*(\d{1,2})\s*[.\-/일]?")
# 24.03.15. (two-digit year, review listings)
_SHORT_DATE = re.compile(r"(?<!\d)(\d{2})\.(\d{2})\.(\d{2})\.?")


def clean_text(text: Optional[str]) -> str:
    """Collapse runs of whitespace and strip."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


def extract_number(text: Optional[str]) -> Optional[Union[int, float]]:
    """Extract the first number from text like '12,900원' or '(3)'.

    Returns an int when the number has no fractional part.
    """
    if not text:
        return None
    match = _NUMBER.search(text.replace(",", ""))
    if not match:
        return None
    value = match.group(0)
    return float(value) if "." in value else int(value)


def extract_rating(text: Optional[str]) -> Optional[float]:
    """Parse a 0-5 rating.

    Values above 5 are taken as 10-point ratings and halved. Text without a
    number is rated by counting filled star glyphs.
    """
    if not text:
        return None
    number = extract_number(text)
    if number is not None:
        rating = float(number)
        if rating > 5:
            rating = rating / 2
        return max(0.0, min(rating, 5.0))

    stars = text.count("★")
    if stars:
        return float(min(stars, 5))
    return None


def parse_date(text: Optional[str]) -> Optional[date]:
    """Parse Korean and ISO style dates; None when unparseable."""
    if not text:
        return None
    text = text.strip()

    try:
        match = _FULL_DATE.search(text)
        if match:
            year, month, day = (int(part) for part in match.groups())
            return date(year, month, day)

        match = _SHORT_DATE.search(text)
        if match:
            year, month, day = (int(part) for part in match.groups())
            return date(2000 + year, month, day)
    except ValueError:
        return None

    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def resolve_url(base_url: str, relative_url: Optional[str]) -> Optional[str]:
    if not relative_url:
        return None
    return urljoin(base_url, relative_url)
