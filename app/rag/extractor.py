"""Web page fetching and main-text extraction.

Handles:
- HTTP fetch with redirects and timeout
- Content container isolation with body fallback
- Title detection from the first heading or document title
- Whitespace normalization
"""
import re
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog
from bs4 import BeautifulSoup

from app import config

logger = structlog.get_logger()

WHITESPACE_PATTERN = re.compile(r"\s+")

# Elements whose text never belongs to readable page content
NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]


@dataclass
class ExtractedPage:
    """Main text and title extracted from a fetched page."""

    url: str
    title: str
    text: str

    @property
    def is_empty(self) -> bool:
        return not self.text


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace to single spaces and trim."""
    return WHITESPACE_PATTERN.sub(" ", text or "").strip()


def _element_text(element) -> str:
    if element is None:
        return ""
    return normalize_whitespace(element.get_text(" "))


def extract_page(
    html: str,
    url: str = "",
    content_selector: Optional[str] = None,
) -> ExtractedPage:
    """Extract title and main text from an HTML document.

    The text comes from the first element matching ``content_selector``,
    falling back to the whole body when the container is missing or empty.

    Args:
        html: Raw HTML
        url: Source URL, carried through for logging and storage
        content_selector: CSS selector of the content container (default from config)

    Returns:
        ExtractedPage with normalized text (possibly empty)
    """
    content_selector = content_selector or config.CONTENT_SELECTOR
    soup = BeautifulSoup(html or "", "html.parser")

    for tag in soup(NON_CONTENT_TAGS):
        tag.decompose()

    title = (
        _element_text(soup.find("h1"))
        or _element_text(soup.find("title"))
        or config.DEFAULT_SECTION
    )

    text = _element_text(soup.select_one(content_selector))
    source = "container"

    if not text:
        body = soup.body
        if body is None:
            # Fragment without <body>: everything outside <head> is content
            for head in soup("head"):
                head.decompose()
            for stray_title in soup("title"):
                stray_title.decompose()
            body = soup
        text = _element_text(body)
        source = "body"

    logger.debug(
        "page_extracted",
        url=url,
        title=title,
        text_length=len(text),
        source=source,
    )

    return ExtractedPage(url=url, title=title, text=text)


class PageExtractor:
    """Fetches web pages and extracts their main text."""

    def __init__(
        self,
        timeout: float = None,
        content_selector: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the extractor.

        Args:
            timeout: Request timeout in seconds (default from config)
            content_selector: CSS selector of the content container (default from config)
            transport: Optional httpx transport (used to stub the network)
        """
        self.timeout = timeout or config.FETCH_TIMEOUT
        self.content_selector = content_selector or config.CONTENT_SELECTOR
        self.transport = transport

    async def fetch_html(self, url: str) -> str:
        """Fetch a page and return its decoded body.

        Raises:
            httpx.HTTPError: On network errors or non-2xx responses
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": config.USER_AGENT},
                transport=self.transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()

        except httpx.HTTPError as e:
            logger.error(
                "page_fetch_failed",
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "page_fetched",
            url=url,
            status_code=response.status_code,
            content_length=len(response.text),
        )

        return response.text

    async def extract(self, url: str) -> ExtractedPage:
        """Fetch a URL and extract its title and main text."""
        html = await self.fetch_html(url)
        return extract_page(html, url=url, content_selector=self.content_selector)
