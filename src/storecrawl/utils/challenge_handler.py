"""
Block-page detection.

Detects captcha, bot-check and access-denied pages served in place of the
expected listing. A detected block is a permanent denial for the job, so
callers turn it into ``ExtractionFatal``.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


# =============================================================================
# Block Detection Selectors
# =============================================================================

BLOCK_INDICATORS = {
    # Naver captcha / bot check
    "naver_captcha_image": ".captcha_img",
    "naver_captcha_alt": "[alt*='보안문자']",
    "captcha_class": "[class*='captcha']",
    "bot_check": ".bot_check",
    "human_verify": ".human_verify",

    # reCAPTCHA / hCaptcha
    "recaptcha_iframe": "iframe[src*='recaptcha'], iframe[title*='reCAPTCHA']",
    "hcaptcha_iframe": "iframe[src*='hcaptcha']",

    # Cloudflare
    "cloudflare_challenge": "#cf-challenge-running, .cf-browser-verification",
    "cloudflare_turnstile": "iframe[src*='challenges.cloudflare']",
}

# Visible text that only appears on denial pages
BLOCK_TEXT_PATTERNS = [
    re.compile(r"보안\s*문자"),
    re.compile(r"자동\s*입력\s*방지"),
    re.compile(r"비정상적인\s*(접근|요청)"),
    re.compile(r"접근이\s*(제한|차단)"),
    re.compile(r"verify you('re| are) (a )?human", re.IGNORECASE),
    re.compile(r"access denied", re.IGNORECASE),
    re.compile(r"unusual traffic", re.IGNORECASE),
]

# URL patterns that indicate a challenge page
BLOCK_URL_PATTERNS = [
    "captcha",
    "nid.naver.com/login",
    "/sorry/",
    "security-check",
]

# HTTP statuses treated as permanent denial
BLOCK_STATUS_CODES = frozenset({403, 429})


@dataclass
class BlockDetectionResult:
    """Structured result of block-page detection."""
    blocked: bool = False
    reason: Optional[str] = None  # status, url, selector or text
    indicators: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for error details."""
        return {
            "blocked": self.blocked,
            "reason": self.reason,
            "indicators": self.indicators,
        }


def is_block_status(status: Optional[int]) -> bool:
    return status in BLOCK_STATUS_CODES


def detect_block_page(
    html: Optional[str],
    url: Optional[str] = None,
    status: Optional[int] = None,
) -> BlockDetectionResult:
    """
    Detect whether a loaded page is a block/deny page.

    Args:
        html: Page HTML (may be a parsed document's string form)
        url: Final page URL after redirects
        status: Main document HTTP status, if known

    Returns:
        BlockDetectionResult
    """
    if is_block_status(status):
        return BlockDetectionResult(blocked=True, reason="status", indicators=[f"http_{status}"])

    if url:
        lowered = url.lower()
        matched = [pattern for pattern in BLOCK_URL_PATTERNS if pattern in lowered]
        if matched:
            return BlockDetectionResult(blocked=True, reason="url", indicators=matched)

    if not html:
        return BlockDetectionResult()

    soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html, "html.parser")

    found = []
    for name, selector in BLOCK_INDICATORS.items():
        try:
            if soup.select_one(selector):
                found.append(name)
        except Exception as e:
            logger.debug(f"Error checking block selector {name}: {e}")
    if found:
        return BlockDetectionResult(blocked=True, reason="selector", indicators=found)

    text = soup.get_text(" ", strip=True)
    found = [pattern.pattern for pattern in BLOCK_TEXT_PATTERNS if pattern.search(text)]
    if found:
        return BlockDetectionResult(blocked=True, reason="text", indicators=found)

    return BlockDetectionResult()
