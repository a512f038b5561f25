import re
import logging
from html import unescape

from bs4 import BeautifulSoup

logger = logging.getLogger("crawlsync.text")

# Elements that never carry article content
NOISE_TAGS = ["script", "style", "nav", "footer", "header", "noscript", "aside", "form"]


def html_to_text(html: str | None) -> str:
    """Strip HTML tags, scripts, styles and page chrome; return clean text."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")

    for tag in soup(NOISE_TAGS):
        tag.decompose()

    # Prefer the main article body when the page marks one
    root = soup.find("article") or soup.find("main") or soup.body or soup
    text = root.get_text(separator=" ", strip=True)
    text = re.sub(r"\s+", " ", text).strip()
    return unescape(text)


def truncate(text: str, limit: int) -> str:
    """Cut text to ``limit`` characters on a word boundary when possible."""
    if len(text) <= limit:
        return text
    cut = text[:limit]
    space = cut.rfind(" ")
    if space > limit * 0.8:
        cut = cut[:space]
    return cut.rstrip()


def extract_article_text(html: str | None, max_chars: int = 2000, min_chars: int = 100) -> str | None:
    """Readable text of a fetched page, or None when too little survives."""
    text = truncate(html_to_text(html), max_chars)
    if len(text) <= min_chars:
        logger.debug("Page text too short to keep (%d chars)", len(text))
        return None
    return text
