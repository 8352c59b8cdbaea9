"""Wiring of concrete clients into the runner and the regulatory orchestrator."""

from dataclasses import dataclass
from typing import Optional

from .config import Settings, get_settings
from .interfaces import DocumentFetcher, LLMClient, RegulatorPortal, RegulatoryStore, SearchProvider
from .regulatory.context import RegulatoryServices
from .regulatory.orchestrator import RegulatoryOrchestrator
from .runner import SentinelRunner
from .scorer import TransactionScorer
from .services.document_fetcher import HttpDocumentFetcher
from .services.llm_client import GroqLLMClient
from .services.mas_portal import MASPortalClient
from .services.store import build_store
from .services.tavily_client import TavilyClient


@dataclass
class SentinelServices:
    settings: Settings
    store: RegulatoryStore
    llm: LLMClient
    search: SearchProvider
    fetcher: DocumentFetcher
    portal: Optional[RegulatorPortal] = None

    def regulatory(self) -> RegulatoryServices:
        return RegulatoryServices(
            search=self.search,
            fetcher=self.fetcher,
            store=self.store,
            portal=self.portal,
            portal_concurrency=self.settings.PORTAL_DETAIL_CONCURRENCY,
        )

    def orchestrator(self) -> RegulatoryOrchestrator:
        return RegulatoryOrchestrator(self.regulatory())

    def runner(self) -> SentinelRunner:
        return SentinelRunner(
            scorer=TransactionScorer(self.llm, self.store),
            orchestrator=self.orchestrator(),
            store=self.store,
            threshold=self.settings.REGULATORY_THRESHOLD,
        )

    async def aclose(self) -> None:
        for client in (self.search, self.fetcher, self.portal):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()


def build_services(settings: Optional[Settings] = None) -> SentinelServices:
    """Concrete clients from settings. Missing API keys surface at call time."""
    settings = settings or get_settings()
    return SentinelServices(
        settings=settings,
        store=build_store(settings),
        llm=GroqLLMClient(settings=settings),
        search=TavilyClient(settings=settings),
        fetcher=HttpDocumentFetcher(settings=settings),
        portal=MASPortalClient(settings=settings),
    )
