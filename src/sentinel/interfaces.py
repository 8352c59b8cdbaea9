"""
Capability interfaces consumed by the pipeline.

Every external collaborator is handed to the pipeline through a constructor
as one of these protocols; concrete implementations live in
``sentinel.services``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .cancellation import CancellationToken


@dataclass
class SearchResult:
    url: str
    title: Optional[str] = None
    content: Optional[str] = None
    snippet: Optional[str] = None
    published_date: Optional[str] = None
    score: Optional[float] = None


@dataclass
class ExtractResult:
    url: str
    content: str = ""
    title: Optional[str] = None
    language: Optional[str] = None


@dataclass
class PortalCard:
    """One listing entry from a regulator portal search page."""

    url: str
    title: Optional[str] = None
    summary: Optional[str] = None
    published_at: Optional[str] = None
    source_hash: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PortalDetail:
    url: str
    title: Optional[str] = None
    published_at: Optional[str] = None
    pdf_links: List[str] = field(default_factory=list)


@dataclass
class HtmlPage:
    """Readable text of a web page plus the first PDF it links to."""

    url: str
    text: str = ""
    title: Optional[str] = None
    pdf_url: Optional[str] = None


class LLMClient(Protocol):
    model: str

    async def complete(
        self,
        system: str,
        user: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Return the raw completion text for a system + user message pair."""
        ...


class SearchProvider(Protocol):
    async def search(
        self,
        query: str,
        *,
        include_domains: Optional[Sequence[str]] = None,
        exclude_domains: Optional[Sequence[str]] = None,
        topic: str = "news",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        max_results: int = 8,
        cancel: Optional[CancellationToken] = None,
    ) -> List[SearchResult]:
        ...

    async def extract(
        self,
        urls: Sequence[str],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> List[ExtractResult]:
        ...


class RegulatorPortal(Protocol):
    async def list_cards(
        self,
        topic: str,
        content_type: str,
        page: int,
        updated_after: Optional[str] = None,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> List[PortalCard]:
        ...

    async def fetch_detail(
        self,
        url: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> PortalDetail:
        ...


class DocumentFetcher(Protocol):
    async def fetch_pdf_text(
        self,
        url: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        ...

    async def fetch_html_page(
        self,
        url: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> HtmlPage:
        ...


class RegulatoryStore(Protocol):
    """Narrow read/write contract onto the persistence layer."""

    async def get_transaction(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def upsert_document(self, record: Dict[str, Any]) -> str:
        """Insert or update a document keyed by URL and return its id."""
        ...

    async def upsert_regulatory_source(self, record: Dict[str, Any]) -> None:
        """Insert or update a regulatory source keyed by ``policy_url``."""
        ...

    async def insert_chunks(self, document_id: str, chunks: List[Dict[str, Any]]) -> None:
        ...

    async def create_rule_version(self, record: Dict[str, Any]) -> str:
        """Insert an immutable rule version row and return its id."""
        ...

    async def record_agent_run(self, record: Dict[str, Any]) -> None:
        ...

    async def insert_alert(self, record: Dict[str, Any]) -> None:
        ...
