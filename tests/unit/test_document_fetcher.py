"""Unit tests for direct PDF and HTML source fetches."""

from unittest.mock import patch

import httpx
import pytest

from sentinel.cancellation import CancellationToken
from sentinel.errors import CancelledRunError, InvalidPDFError, NetworkError
from sentinel.services.document_fetcher import HttpDocumentFetcher

FAKE_PDF = b"%PDF-1.4\n" + b"0" * 200

CIRCULAR_HTML = """
<html>
  <head><title>Circular on Cash Transactions</title></head>
  <body>
    <nav>Home | About</nav>
    <main>
      <h1>Circular on Cash Transactions</h1>
      <p>Banks must report cash transactions above the threshold within five business days.</p>
      <a href="/files/circular.pdf">Download</a>
    </main>
  </body>
</html>
"""


def document_fetcher(handler, settings):
    return HttpDocumentFetcher(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        settings=settings,
    )


class TestFetchPdfText:
    """Test PDF downloads over a mocked transport."""

    @pytest.mark.asyncio
    async def test_download_error(self, settings):
        """Test non-2xx downloads raise NetworkError."""
        fetcher = document_fetcher(lambda request: httpx.Response(404), settings)

        with pytest.raises(NetworkError) as exc_info:
            await fetcher.fetch_pdf_text("https://x.org/missing.pdf")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_non_pdf_payload(self, settings):
        """Test HTML served at a PDF URL is rejected."""
        fetcher = document_fetcher(lambda request: httpx.Response(200, html="<html>" + " " * 200), settings)

        with pytest.raises(InvalidPDFError):
            await fetcher.fetch_pdf_text("https://x.org/login.pdf")

    @pytest.mark.asyncio
    async def test_successful_fetch(self, settings):
        """Test downloaded bytes are handed to the extractor."""
        fetcher = document_fetcher(lambda request: httpx.Response(200, content=FAKE_PDF), settings)

        with patch("sentinel.services.document_fetcher.extract_pdf_text", return_value="Parsed text") as mock_extract:
            assert await fetcher.fetch_pdf_text("https://x.org/doc.pdf") == "Parsed text"
        mock_extract.assert_called_once_with(FAKE_PDF)

    @pytest.mark.asyncio
    async def test_transport_error(self, settings):
        """Test connection failures are wrapped in NetworkError."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = document_fetcher(handler, settings)

        with pytest.raises(NetworkError, match="PDF download failed"):
            await fetcher.fetch_pdf_text("https://x.org/doc.pdf")


class TestFetchHtmlPage:
    """Test web page downloads over a mocked transport."""

    @pytest.mark.asyncio
    async def test_page_text_and_pdf_link(self, settings):
        """Test the page is fetched as HTML and reduced to text, title and PDF link."""
        seen = {}

        def handler(request):
            seen["accept"] = request.headers.get("accept")
            seen["user_agent"] = request.headers.get("user-agent")
            return httpx.Response(200, html=CIRCULAR_HTML)

        fetcher = document_fetcher(handler, settings)

        page = await fetcher.fetch_html_page("https://reg.example.org/news/circular")

        assert seen["accept"].startswith("text/html")
        assert seen["user_agent"].startswith("Mozilla/5.0")
        assert page.title == "Circular on Cash Transactions"
        assert "report cash transactions above the threshold" in page.text
        assert "Home | About" not in page.text
        assert page.pdf_url == "https://reg.example.org/files/circular.pdf"

    @pytest.mark.asyncio
    async def test_error_status(self, settings):
        """Test non-2xx pages raise NetworkError."""
        fetcher = document_fetcher(lambda request: httpx.Response(503), settings)

        with pytest.raises(NetworkError) as exc_info:
            await fetcher.fetch_html_page("https://reg.example.org/news/circular")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_cancelled_before_request(self, settings):
        """Test a cancelled token stops the fetch before any request."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, html=CIRCULAR_HTML)

        fetcher = document_fetcher(handler, settings)
        cancel = CancellationToken()
        cancel.cancel("client disconnected")

        with pytest.raises(CancelledRunError):
            await fetcher.fetch_html_page("https://reg.example.org/news/circular", cancel=cancel)
        assert calls == []
