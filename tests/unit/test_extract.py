"""Unit tests for regulatory document extraction."""

from unittest.mock import AsyncMock

import pytest

from sentinel.errors import NetworkError, PersistenceError
from sentinel.interfaces import ExtractResult, HtmlPage
from sentinel.models import RegulatoryCandidate, RegulatoryDocument
from sentinel.regulatory.extract import changed_documents, extract_regulatory_documents, source_record

PORTAL_URL = "https://www.mas.gov.sg/regulation/notices/notice-626"
PDF_URL = "https://www.mas.gov.sg/-/media/notice-626.pdf"
PDF_TEXT = "Banks must verify the identity of customers before onboarding. " * 10
PAGE_TEXT = "Institutions must file suspicious transaction reports within fifteen business days. " * 5


def portal_candidate():
    return RegulatoryCandidate(
        url=PORTAL_URL,
        regulator="MAS",
        source="mas_portal",
        title="Notice 626",
        listing_topic="anti-money-laundering",
        listing_content_type="Notices",
    )


def tavily_candidate(url):
    return RegulatoryCandidate(url=url, regulator="TEST", source="tavily", metadata={"query": "q"})


def document(url, content):
    return RegulatoryDocument(url=url, regulator="TEST", content=content)


class TestChangedDocuments:
    """Test new-or-changed detection."""

    def test_unknown_and_changed_documents_are_new(self):
        """Test unknown URLs and changed content count as new; identical content does not."""
        existing = [document("https://a", "same"), document("https://b", "old")]
        extracted = [document("https://a", "same"), document("https://b", "new"), document("https://c", "x")]

        result = changed_documents(existing, extracted)

        assert [d.url for d in result] == ["https://b", "https://c"]


class TestSourceRecord:
    """Test regulatory source ledger rows."""

    def test_html_document_row(self):
        """Test summary, domain and date-only published date are carried over."""
        doc = RegulatoryDocument(
            url="https://reg.example.org/news/str-guidance",
            regulator="TEST",
            title="STR guidance",
            content=PAGE_TEXT,
            content_type="html",
            published_at="2024-05-02T08:30:00Z",
            meta={"summary": "Reporting timelines", "pdf_url": "https://reg.example.org/files/str.pdf"},
        )

        record = source_record(doc)

        assert record["policy_url"] == doc.url
        assert record["regulator_name"] == "TEST"
        assert record["description"] == "Reporting timelines"
        assert record["regulatory_document_file"] == "https://reg.example.org/files/str.pdf"
        assert record["domain"] == "reg.example.org"
        assert record["published_date"] == "2024-05-02"
        assert record["last_updated_date"]

    def test_pdf_document_row(self):
        """Test PDFs point at themselves and untitled documents fall back to the URL."""
        doc = RegulatoryDocument(url=PDF_URL, regulator="", content=PDF_TEXT, content_type="pdf")

        record = source_record(doc)

        assert record["regulatory_document_file"] == PDF_URL
        assert record["title"] == PDF_URL
        assert record["regulator_name"] == "Unknown"
        assert record["description"] == PDF_TEXT[:300]
        assert record["published_date"] is None


class TestExtractDocuments:
    """Test extraction through search, portal and PDF paths."""

    @pytest.mark.asyncio
    async def test_nothing_fresh(self, stage_context, buffer):
        """Test no candidates means no work and no events."""
        outcome = await extract_regulatory_documents(stage_context, [], [])

        assert outcome.new_documents == []
        assert buffer.events == []

    @pytest.mark.asyncio
    async def test_batch_extraction(self, stage_context, search):
        """Test search-provider extraction builds documents with candidate metadata."""
        fresh = [
            tavily_candidate("https://reg.example.org/circulars/aml-2024-01"),
            tavily_candidate("https://reg.example.org/notices/cdd-update"),
        ]

        outcome = await extract_regulatory_documents(stage_context, fresh, [])

        assert len(outcome.new_documents) == 2
        doc = outcome.new_documents[1]
        assert doc.content_type == "html"
        assert doc.tags == ["regulatory", "test"]
        assert doc.meta["query"] == "q"
        assert doc.meta["language"] == "en"
        assert search.extract_calls == [[c.url for c in fresh]]

    @pytest.mark.asyncio
    async def test_empty_content_is_skipped(self, stage_context, search):
        """Test empty extraction results do not become documents."""
        url = "https://reg.example.org/empty"
        search.extracts[url] = ExtractResult(url=url, content="   ")

        outcome = await extract_regulatory_documents(stage_context, [tavily_candidate(url)], [])

        assert outcome.new_documents == []
        assert outcome.snippets[-1].level == "warning"

    @pytest.mark.asyncio
    async def test_portal_pdf_path(self, stage_context, regulatory_services, portal, fetcher, mas_detail):
        """Test portal detail pages are enriched and their PDFs parsed directly."""
        portal.details[PORTAL_URL] = mas_detail
        fetcher.texts[PDF_URL] = PDF_TEXT
        regulatory_services.portal = portal

        outcome = await extract_regulatory_documents(stage_context, [portal_candidate()], [])

        assert fetcher.calls == [PDF_URL]
        pdf_docs = [d for d in outcome.new_documents if d.content_type == "pdf"]
        assert len(pdf_docs) == 1
        assert pdf_docs[0].url == PDF_URL
        assert pdf_docs[0].meta["pdf_source_url"] == PORTAL_URL

        by_url = {c.url: c for c in outcome.candidates}
        assert by_url[PORTAL_URL].pdf_links == [PDF_URL + "#page=2"]
        assert by_url[PORTAL_URL].published_at == "2024-05-02"
        assert by_url[PDF_URL].source == "mas_portal_pdf"
        assert by_url[PDF_URL].parent_url == PORTAL_URL
        assert any("Parsed 1 MAS portal PDF document." == s.text for s in outcome.snippets)

    @pytest.mark.asyncio
    async def test_portal_detail_failure(self, stage_context, regulatory_services, portal):
        """Test a failed detail fetch becomes a warning snippet."""
        regulatory_services.portal = portal

        outcome = await extract_regulatory_documents(stage_context, [portal_candidate()], [])

        assert any(s.level == "warning" and PORTAL_URL in s.text for s in outcome.snippets)

    @pytest.mark.asyncio
    async def test_pdf_failure_falls_through_to_batch(self, stage_context, regulatory_services, portal, fetcher, search, mas_detail):
        """Test a PDF that cannot be parsed is handed to the extraction provider."""
        portal.details[PORTAL_URL] = mas_detail
        fetcher.errors[PDF_URL] = NetworkError("PDF download responded with 404", status_code=404)
        search.extracts[PDF_URL] = ExtractResult(url=PDF_URL, content=PDF_TEXT)
        regulatory_services.portal = portal

        outcome = await extract_regulatory_documents(stage_context, [portal_candidate()], [])

        assert PDF_URL in search.extract_calls[0]
        assert search.extract_calls[0][0] == PDF_URL
        assert [d.url for d in outcome.new_documents] == [PDF_URL]

    @pytest.mark.asyncio
    async def test_direct_pdf_fallback(self, stage_context, fetcher):
        """Test PDF URLs the provider returned nothing for are fetched directly."""
        url = "https://reg.example.org/guidance.pdf"
        fetcher.texts[url] = PDF_TEXT

        outcome = await extract_regulatory_documents(stage_context, [tavily_candidate(url)], [])

        assert [d.url for d in outcome.new_documents] == [url]
        assert outcome.new_documents[0].meta["source"] == "direct_pdf"
        assert any(s.text == "Fallback extractor captured 1 document." for s in outcome.snippets)

    @pytest.mark.asyncio
    async def test_direct_pdf_fallback_ignores_short_text(self, stage_context, fetcher):
        """Test fallback PDFs shorter than the minimum are discarded."""
        url = "https://reg.example.org/cover.pdf"
        fetcher.texts[url] = "Cover page only."

        outcome = await extract_regulatory_documents(stage_context, [tavily_candidate(url)], [])

        assert outcome.new_documents == []

    @pytest.mark.asyncio
    async def test_unchanged_documents_are_not_new(self, stage_context):
        """Test re-extracting identical content is merged but not new."""
        url = "https://reg.example.org/circulars/aml-2024-01"
        first = await extract_regulatory_documents(stage_context, [tavily_candidate(url)], [])

        second = await extract_regulatory_documents(stage_context, [tavily_candidate(url)], first.documents)

        assert second.new_documents == []
        assert len(second.documents) == 1

    @pytest.mark.asyncio
    async def test_html_fallback(self, stage_context, fetcher):
        """Test web pages the provider returned nothing for are fetched and kept with their PDF link."""
        url = "https://reg.example.org/news/str-guidance"
        fetcher.pages[url] = HtmlPage(
            url=url,
            text=PAGE_TEXT.strip(),
            title="STR guidance",
            pdf_url="https://reg.example.org/files/str-guidance.pdf",
        )

        outcome = await extract_regulatory_documents(stage_context, [tavily_candidate(url)], [])

        assert fetcher.page_calls == [url]
        assert fetcher.calls == []
        doc = outcome.new_documents[0]
        assert doc.url == url
        assert doc.content_type == "html"
        assert doc.title == "STR guidance"
        assert doc.meta["source"] == "html_fetch"
        assert doc.meta["pdf_url"] == "https://reg.example.org/files/str-guidance.pdf"
        assert any(s.text == "Fallback extractor captured 1 document." for s in outcome.snippets)

    @pytest.mark.asyncio
    async def test_html_fallback_prefers_candidate_title_and_caps_text(self, stage_context, fetcher):
        """Test the candidate title wins over the page title and long pages are truncated."""
        url = "https://reg.example.org/news/long-page"
        candidate = tavily_candidate(url).model_copy(update={"title": "Candidate title"})
        fetcher.pages[url] = HtmlPage(url=url, text="x" * 250_000, title="Page title")

        outcome = await extract_regulatory_documents(stage_context, [candidate], [])

        doc = outcome.new_documents[0]
        assert doc.title == "Candidate title"
        assert len(doc.content) == 200_000

    @pytest.mark.asyncio
    async def test_html_fallback_ignores_short_text(self, stage_context, fetcher):
        """Test fallback pages under 300 characters are discarded."""
        url = "https://reg.example.org/news/redirect"
        fetcher.pages[url] = HtmlPage(url=url, text="Please enable JavaScript to view this page. " * 5)

        outcome = await extract_regulatory_documents(stage_context, [tavily_candidate(url)], [])

        assert outcome.new_documents == []
        assert fetcher.page_calls == [url]

    @pytest.mark.asyncio
    async def test_html_fallback_error_is_a_warning(self, stage_context, fetcher):
        """Test a failed page fetch becomes a warning snippet."""
        url = "https://reg.example.org/news/gone"
        fetcher.errors[url] = NetworkError("HTML download responded with 410", status_code=410)

        outcome = await extract_regulatory_documents(stage_context, [tavily_candidate(url)], [])

        assert outcome.new_documents == []
        assert any(s.level == "warning" and s.text.startswith(f"Fallback extract failed for {url}") for s in outcome.snippets)

    @pytest.mark.asyncio
    async def test_fallback_is_capped(self, stage_context, fetcher):
        """Test at most eight unresolved URLs are fetched directly."""
        fresh = [tavily_candidate(f"https://reg.example.org/news/{i}") for i in range(10)]

        await extract_regulatory_documents(stage_context, fresh, [])

        assert len(fetcher.page_calls) == 8

    @pytest.mark.asyncio
    async def test_sources_are_persisted(self, stage_context, store):
        """Test every extracted document is upserted into the regulatory source ledger."""
        fresh = [
            tavily_candidate("https://reg.example.org/circulars/aml-2024-01"),
            tavily_candidate("https://reg.example.org/notices/cdd-update"),
        ]

        outcome = await extract_regulatory_documents(stage_context, fresh, [])

        assert set(store.regulatory_sources) == {c.url for c in fresh}
        row = store.regulatory_sources["https://reg.example.org/circulars/aml-2024-01"]
        assert row["regulator_name"] == "TEST"
        assert row["title"] == "AML circular"
        assert row["domain"] == "reg.example.org"
        assert "regulatory_document_file" not in row
        assert outcome.snippets[-1].text == "Persisted 2 regulatory sources to the database."

    @pytest.mark.asyncio
    async def test_source_persistence_is_best_effort(self, stage_context, store):
        """Test a failing source ledger write leaves the extracted documents intact."""
        store.upsert_regulatory_source = AsyncMock(side_effect=PersistenceError("regulatory_sources missing"))
        url = "https://reg.example.org/circulars/aml-2024-01"

        outcome = await extract_regulatory_documents(stage_context, [tavily_candidate(url)], [])

        assert [d.url for d in outcome.new_documents] == [url]
        assert not any("Persisted" in s.text for s in outcome.snippets)
        store.upsert_regulatory_source.assert_awaited_once()
