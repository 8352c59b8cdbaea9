"""
MAS regulations-and-guidance portal client.

The listing search is an AJAX endpoint guarded by an anti-forgery token, so
every listing request first loads the public listing page to obtain the
``__RequestVerificationToken`` and session cookies, then POSTs the search
form. Responses come back either as JSON or as rendered listing HTML.
"""

import hashlib
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
import structlog
from bs4 import BeautifulSoup

from ..cancellation import CancellationToken
from ..config import Settings, get_settings
from ..errors import NetworkError
from ..interfaces import PortalCard, PortalDetail

logger = structlog.get_logger(__name__)

MAS_BASE_URL = "https://www.mas.gov.sg"
LISTING_PATH = "/regulation/regulations-and-guidance"
SEARCH_COMPONENT_ENDPOINT = "https://www.mas.gov.sg/api/v1/MAS/SearchFromComponent?searchurl=%2fsearch"

MAS_PORTAL_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36"
)

HTML_HEADERS = {
    "User-Agent": MAS_PORTAL_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

SEARCH_HEADERS = {
    "User-Agent": MAS_PORTAL_USER_AGENT,
    "Accept": "application/json, text/plain, */*",
    "X-Requested-With": "XMLHttpRequest",
    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
}

TOKEN_RE = re.compile(r'name="__RequestVerificationToken"[^>]*value="([^"]+)"', re.IGNORECASE)
PDF_HREF_RE = re.compile(r"\.pdf(\?|$)", re.IGNORECASE)


def build_listing_url(topic: str, content_type: str, page: int = 1) -> str:
    params = {"topics": topic, "contentType": content_type}
    if page > 1:
        params["page"] = str(page)
    return f"{MAS_BASE_URL}{LISTING_PATH}?{urlencode(params)}"


def absolute_url(href: Optional[str]) -> Optional[str]:
    if not href:
        return None
    if re.match(r"^https?:", href, re.IGNORECASE):
        return href
    if href.startswith("//"):
        return f"https:{href}"
    if href.startswith("/"):
        return f"{MAS_BASE_URL}{href}"
    return f"{MAS_BASE_URL}/{href}"


def hash_source(href: str, published: Optional[str]) -> str:
    return hashlib.sha1(f"{href}|{published or ''}".encode("utf-8")).hexdigest()


def _card_metadata(topic: str, content_type: str, page: int) -> Dict[str, Any]:
    return {"page": page, "listing_topic": topic, "listing_content_type": content_type}


def parse_listing_html(html: str, topic: str, content_type: str, page: int = 1) -> List[PortalCard]:
    """Parse ``.listing__result`` entries from rendered listing HTML."""
    soup = BeautifulSoup(html, "html.parser")
    cards = []

    for element in soup.select(".listing__result"):
        anchor = element.find("a")
        href = absolute_url(anchor.get("href") if anchor else None)
        if not href:
            continue

        title = anchor.get_text(strip=True)
        summary_elem = element.select_one(".listing__item__summary")
        summary = summary_elem.get_text(strip=True) if summary_elem else ""
        time_elem = element.find("time")
        published = time_elem.get("datetime") if time_elem else None

        cards.append(
            PortalCard(
                url=href,
                title=title or None,
                summary=summary or None,
                published_at=published or None,
                source_hash=hash_source(href, published),
                metadata=_card_metadata(topic, content_type, page),
            )
        )

    return cards


def parse_listing_json(payload: Any, topic: str, content_type: str, page: int = 1) -> List[PortalCard]:
    """Parse search results from the JSON variant of the search endpoint."""
    if not isinstance(payload, dict):
        return []

    data_section = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    items = (
        payload.get("results")
        or payload.get("items")
        or data_section.get("results")
        or data_section.get("items")
        or []
    )
    if not isinstance(items, list):
        return []

    cards = []
    for item in items:
        if not isinstance(item, dict):
            continue
        href = absolute_url(item.get("url") or item.get("link") or item.get("permalink"))
        if not href:
            continue

        published = item.get("published_at") or item.get("publishDate") or item.get("date")
        metadata = _card_metadata(topic, content_type, page)
        metadata["raw"] = item

        cards.append(
            PortalCard(
                url=href,
                title=item.get("title") or item.get("name") or item.get("heading") or None,
                summary=item.get("summary") or item.get("description") or item.get("snippet") or None,
                published_at=published or None,
                source_hash=hash_source(href, published),
                metadata=metadata,
            )
        )

    return cards


def parse_detail_html(url: str, html: str) -> PortalDetail:
    """Pull title, publish date and embedded PDF links from a detail page."""
    soup = BeautifulSoup(html, "html.parser")

    def _attr(selector: str, attr: str) -> Optional[str]:
        elem = soup.select_one(selector)
        value = elem.get(attr) if elem else None
        return value.strip() if isinstance(value, str) and value.strip() else None

    def _text(selector: str) -> Optional[str]:
        elem = soup.select_one(selector)
        text = elem.get_text(strip=True) if elem else ""
        return text or None

    title = (
        _attr("[data-analytics-title]", "data-analytics-title")
        or _attr("meta[property='og:title']", "content")
        or _text("h1")
        or _text("title")
    )
    published_at = (
        _attr("meta[property='article:published_time']", "content")
        or _attr("meta[name='DC.Date']", "content")
        or _attr("time", "datetime")
    )

    pdf_links: List[str] = []
    for anchor in soup.select("a[href$='.pdf'], a[data-file-extension='pdf']"):
        href = absolute_url(anchor.get("href"))
        if href and href not in pdf_links:
            pdf_links.append(href)
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"]
        if PDF_HREF_RE.search(href):
            absolute = absolute_url(href)
            if absolute and absolute not in pdf_links:
                pdf_links.append(absolute)

    return PortalDetail(url=url, title=title, published_at=published_at, pdf_links=pdf_links)


class MASPortalClient:
    """Session-bootstrapped client for the MAS regulation listing and detail pages."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.REQUEST_TIMEOUT,
            follow_redirects=False,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _bootstrap_session(self, listing_url: str) -> Dict[str, Optional[str]]:
        """Load the listing page and capture the anti-forgery token and cookies."""
        try:
            response = await self._http.get(listing_url, headers=HTML_HEADERS)
        except httpx.HTTPError as e:
            raise NetworkError(f"Listing bootstrap failed: {e}", url=listing_url) from e

        html = response.text
        match = TOKEN_RE.search(html)
        cookies = [
            cookie.split(";")[0]
            for cookie in response.headers.get_list("set-cookie")
            if cookie.split(";")[0]
        ]
        return {
            "token": match.group(1) if match else None,
            "cookie_header": "; ".join(cookies) if cookies else None,
        }

    async def list_cards(
        self,
        topic: str,
        content_type: str,
        page: int,
        updated_after: Optional[str] = None,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> List[PortalCard]:
        """
        Fetch one listing page for a topic and content type.

        Returns an empty list when the session could not be bootstrapped.

        Raises:
            NetworkError: If the search request fails
        """
        if cancel is not None:
            cancel.raise_if_cancelled()

        listing_url = build_listing_url(topic, content_type, page)
        session = await self._bootstrap_session(listing_url)
        if not session["token"] or not session["cookie_header"]:
            logger.warning(
                "MAS portal session bootstrap incomplete",
                url=listing_url,
                status="bootstrap_incomplete",
                details={"topic": topic, "content_type": content_type},
            )
            return []

        form = {"q": "", "searchUrl": LISTING_PATH, "topics": topic, "contentType": content_type}
        if page:
            form["page"] = str(page)
        if updated_after:
            form["updatedAfter"] = updated_after

        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            response = await self._http.post(
                SEARCH_COMPONENT_ENDPOINT,
                content=urlencode(form),
                headers={
                    **SEARCH_HEADERS,
                    "Cookie": session["cookie_header"],
                    "Referer": listing_url,
                    "__RequestVerificationToken": session["token"],
                },
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"SearchFromComponent request failed: {e}", url=SEARCH_COMPONENT_ENDPOINT) from e

        if response.status_code >= 400:
            raise NetworkError(
                f"SearchFromComponent responded with {response.status_code}",
                status_code=response.status_code,
                url=SEARCH_COMPONENT_ENDPOINT,
            )

        if "application/json" in response.headers.get("content-type", ""):
            cards = parse_listing_json(response.json(), topic, content_type, page)
        else:
            cards = parse_listing_html(response.text, topic, content_type, page)

        logger.info(
            "MAS portal listing parsed",
            cards=len(cards),
            status="listing_success",
            details={"topic": topic, "content_type": content_type, "page": page},
        )
        return cards

    async def fetch_detail(
        self,
        url: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> PortalDetail:
        """
        Fetch and parse a detail page.

        Raises:
            NetworkError: If the page cannot be fetched
        """
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            response = await self._http.get(url, headers=HTML_HEADERS, follow_redirects=True)
        except httpx.HTTPError as e:
            raise NetworkError(f"Detail fetch failed: {e}", url=url) from e

        if response.status_code >= 400:
            raise NetworkError(
                f"Detail fetch responded with {response.status_code}",
                status_code=response.status_code,
                url=url,
            )
        return parse_detail_html(url, response.text)
