"""
Readable text extraction from regulator web pages.

The page body is taken from its ``article`` / ``main`` elements; pages whose
landmark text is too thin fall back to their joined paragraphs. Whitespace is
collapsed in either case.
"""

import re
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from ..interfaces import HtmlPage

MIN_LANDMARK_CHARS = 200

WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text).strip()


def _landmark_text(soup: BeautifulSoup) -> str:
    matches = soup.select("article, main")
    seen = {id(element) for element in matches}
    # nested landmarks are already covered by their outermost match
    outermost = [el for el in matches if not any(id(parent) in seen for parent in el.parents)]
    return " ".join(el.get_text(" ") for el in outermost)


def _paragraph_text(soup: BeautifulSoup) -> str:
    paragraphs: List[str] = [p.get_text(" ").strip() for p in soup.find_all("p")]
    return "\n\n".join(p for p in paragraphs if p)


def parse_html_page(html: str, url: str) -> HtmlPage:
    """
    Parse a fetched HTML page into its readable text, title and first PDF link.

    Args:
        html: Page markup
        url: Page URL, used to resolve a relative PDF link

    Returns:
        HtmlPage with whitespace-collapsed text (empty when nothing readable)
    """
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style", "noscript"]):
        element.decompose()

    text = _landmark_text(soup)
    if len(text.strip()) < MIN_LANDMARK_CHARS:
        text = _paragraph_text(soup)

    title: Optional[str] = None
    if soup.title is not None:
        title = soup.title.get_text(strip=True) or None

    pdf_url: Optional[str] = None
    anchor = soup.select_one('a[href$=".pdf"]')
    if anchor is not None and anchor.get("href"):
        pdf_url = urljoin(url, anchor["href"])

    return HtmlPage(url=url, text=collapse_whitespace(text), title=title, pdf_url=pdf_url)
