"""Pytest configuration and shared fixtures for Sentinel tests."""

import json

import pytest

from sentinel.config import Settings
from sentinel.events import BufferSubscriber, EventChannel
from sentinel.interfaces import ExtractResult, HtmlPage, PortalDetail, SearchResult
from sentinel.models import SentinelState, Transaction
from sentinel.regulatory.constants import RegulatorConfig
from sentinel.regulatory.context import RegulatoryServices, StageContext
from sentinel.regulatory.orchestrator import RegulatoryOrchestrator
from sentinel.runner import SentinelRunner
from sentinel.scorer import TransactionScorer
from sentinel.services.store import InMemoryStore

CIRCULAR_URL = "https://reg.example.org/circulars/aml-2024-01"
NOTICE_URL = "https://reg.example.org/notices/cdd-update"

CIRCULAR_TEXT = (
    "Circular on customer due diligence. "
    "Financial institutions must perform enhanced due diligence on high-risk customers. "
    "Institutions shall retain records for five years. "
    "This circular is effective 1 May 2024."
)
NOTICE_TEXT = (
    "Notice on wire transfers. "
    "Ordering institutions are required to include complete originator information. "
    "Effective 2024-07-01 for all cross-border transfers."
)


def llm_answer(score, hits=None):
    return json.dumps({"rule_hits": hits or [], "score": score})


class FakeLLM:
    """Canned-completion LLM client."""

    model = "fake-model"

    def __init__(self, response=None, error=None):
        self.response = response if response is not None else llm_answer(0.2)
        self.error = error
        self.calls = []

    async def complete(self, system, user, *, cancel=None):
        if cancel is not None:
            cancel.raise_if_cancelled()
        self.calls.append({"system": system, "user": user})
        if self.error is not None:
            raise self.error
        return self.response


class FakeSearch:
    """Search provider returning the same results for every query."""

    def __init__(self, results=None, extracts=None, error=None, extract_error=None):
        self.results = list(results or [])
        self.extracts = dict(extracts or {})
        self.error = error
        self.extract_error = extract_error
        self.search_calls = []
        self.extract_calls = []

    async def search(
        self,
        query,
        *,
        include_domains=None,
        exclude_domains=None,
        topic="news",
        start_date=None,
        end_date=None,
        max_results=8,
        cancel=None,
    ):
        if cancel is not None:
            cancel.raise_if_cancelled()
        self.search_calls.append({"query": query, "include_domains": include_domains, "start_date": start_date})
        if self.error is not None:
            raise self.error
        return list(self.results)

    async def extract(self, urls, *, cancel=None):
        self.extract_calls.append(list(urls))
        if self.extract_error is not None:
            raise self.extract_error
        return [self.extracts[url] for url in urls if url in self.extracts]


class FakeFetcher:
    """Document fetcher backed by url -> text and url -> page mappings."""

    def __init__(self, texts=None, pages=None, errors=None):
        self.texts = dict(texts or {})
        self.pages = dict(pages or {})
        self.errors = dict(errors or {})
        self.calls = []
        self.page_calls = []

    async def fetch_pdf_text(self, url, *, cancel=None):
        self.calls.append(url)
        if url in self.errors:
            raise self.errors[url]
        return self.texts.get(url, "")

    async def fetch_html_page(self, url, *, cancel=None):
        self.page_calls.append(url)
        if url in self.errors:
            raise self.errors[url]
        return self.pages.get(url, HtmlPage(url=url))


class FakePortal:
    """Regulator portal with fixed listing pages and detail pages."""

    def __init__(self, cards=None, details=None):
        self.cards = dict(cards or {})
        self.details = dict(details or {})
        self.list_calls = []
        self.detail_calls = []

    async def list_cards(self, topic, content_type, page, updated_after=None, *, cancel=None):
        self.list_calls.append((topic, content_type, page))
        return list(self.cards.get((topic, content_type, page), []))

    async def fetch_detail(self, url, *, cancel=None):
        self.detail_calls.append(url)
        detail = self.details.get(url)
        if detail is None:
            raise RuntimeError(f"no detail page for {url}")
        return detail


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        GROQ_API_KEY=None,
        TAVILY_API_KEY=None,
        SUPABASE_URL=None,
        SUPABASE_SERVICE_ROLE_KEY=None,
    )


@pytest.fixture
def sample_transaction_row():
    """Stored transaction row as the store returns it."""
    return {
        "id": "txn_001",
        "amount": 250000,
        "currency": "SGD",
        "customer_id": "cust_42",
        "meta": {
            "booking_jurisdiction": "SG",
            "channel": "cash",
            "customer_is_pep": True,
            "originator_country": "SG",
            "beneficiary_country": "RU",
        },
    }


@pytest.fixture
def sample_transaction(sample_transaction_row):
    """Sample transaction for scorer and runner tests."""
    return Transaction.from_row(sample_transaction_row)


@pytest.fixture
def store(sample_transaction_row):
    """In-memory store seeded with one transaction."""
    return InMemoryStore(transactions=[sample_transaction_row])


@pytest.fixture
def llm():
    """LLM that answers with a low score and no hits."""
    return FakeLLM()


@pytest.fixture
def search():
    """Search provider finding two sources, both extractable."""
    return FakeSearch(
        results=[
            SearchResult(url=CIRCULAR_URL, title="AML circular", content="Circular summary", published_date="2024-04-20"),
            SearchResult(url=NOTICE_URL, title="CDD notice", snippet="Notice summary"),
        ],
        extracts={
            CIRCULAR_URL: ExtractResult(url=CIRCULAR_URL, content=CIRCULAR_TEXT, title="AML circular"),
            NOTICE_URL: ExtractResult(url=NOTICE_URL, content=NOTICE_TEXT, language="en"),
        },
    )


@pytest.fixture
def fetcher():
    """Document fetcher with nothing to fetch."""
    return FakeFetcher()


@pytest.fixture
def test_regulator():
    """Single regulator without a portal integration."""
    return RegulatorConfig(
        code="TEST",
        regulator="TEST",
        include_domains=["reg.example.org"],
        queries=["test aml circular"],
        tags=["regulatory", "test"],
    )


@pytest.fixture
def regulatory_services(search, fetcher, store):
    """Regulatory collaborators built from the fakes."""
    return RegulatoryServices(search=search, fetcher=fetcher, store=store)


@pytest.fixture
def orchestrator(regulatory_services, test_regulator):
    """Orchestrator restricted to the test regulator."""
    return RegulatoryOrchestrator(regulatory_services, configs=[test_regulator])


@pytest.fixture
def runner(llm, orchestrator, store):
    """Runner wired to the fakes with the default threshold."""
    return SentinelRunner(TransactionScorer(llm, store), orchestrator, store=store)


@pytest.fixture
def buffer():
    """Collects published events."""
    return BufferSubscriber()


@pytest.fixture
def channel(buffer):
    """Event channel publishing to the buffer."""
    return EventChannel("test_run", [buffer])


@pytest.fixture
def stage_context(channel, regulatory_services, test_regulator):
    """Stage context for calling regulatory stages directly."""
    return StageContext(channel=channel, services=regulatory_services, configs=[test_regulator])


@pytest.fixture
def regulatory_state():
    """Fresh standalone regulatory state."""
    return SentinelState(transaction_id="regulatory_only", score=1.0)


@pytest.fixture
def mas_detail():
    """MAS portal detail page with one embedded PDF."""
    return PortalDetail(
        url="https://www.mas.gov.sg/regulation/notices/notice-626",
        title="Notice 626",
        published_at="2024-05-02",
        pdf_links=["https://www.mas.gov.sg/-/media/notice-626.pdf#page=2"],
    )


@pytest.fixture
def portal():
    """Empty regulator portal; tests fill in cards and details."""
    return FakePortal()
