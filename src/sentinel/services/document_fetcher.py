"""
Direct HTTP fetches of regulatory sources.

Used when the search provider's extractor returns nothing for a URL: PDFs are
downloaded and parsed locally, web pages are reduced to their readable text.
"""

import asyncio
from typing import Optional

import httpx
import structlog

from ..cancellation import CancellationToken
from ..config import Settings, get_settings
from ..errors import NetworkError
from ..interfaces import HtmlPage
from .html_extraction import parse_html_page
from .mas_portal import HTML_HEADERS
from .pdf_extraction import extract_pdf_text

logger = structlog.get_logger(__name__)

PDF_HEADERS = {"Accept": "application/pdf,*/*;q=0.8"}


class HttpDocumentFetcher:
    """Fetches PDF and HTML sources and returns their plaintext."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.PDF_TIMEOUT,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get(self, url: str, headers: dict, kind: str, cancel: Optional[CancellationToken]) -> httpx.Response:
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            response = await self._http.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise NetworkError(f"{kind} download failed: {e}", url=url) from e

        if response.status_code >= 400:
            raise NetworkError(
                f"{kind} download responded with {response.status_code}",
                status_code=response.status_code,
                url=url,
            )
        return response

    async def fetch_pdf_text(
        self,
        url: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """
        Download a PDF and extract its text.

        Raises:
            NetworkError: If the download fails
            PDFExtractionError: If the payload cannot be parsed
        """
        response = await self._get(url, PDF_HEADERS, "PDF", cancel)
        # parsing is CPU bound; keep the event loop free
        return await asyncio.to_thread(extract_pdf_text, response.content)

    async def fetch_html_page(
        self,
        url: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> HtmlPage:
        """
        Download a web page and reduce it to readable text.

        Raises:
            NetworkError: If the download fails
        """
        response = await self._get(url, HTML_HEADERS, "HTML", cancel)
        page = parse_html_page(response.text, str(response.url))
        logger.debug("HTML page parsed", url=url, chars=len(page.text), pdf_url=page.pdf_url)
        return page
