"""
Pydantic schemas for API requests and responses
"""
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .models import (
    RegulatoryCandidate,
    RegulatoryDocument,
    RegulatorySnippet,
    RegulatoryVersionRecord,
    RuleProposal,
    SentinelState,
)

REGULATORY_ONLY_TRANSACTION = "regulatory_only"
DEFAULT_REGULATORS = ["MAS", "FINMA", "HKMA"]


class MonitorRequest(BaseModel):
    """Body of POST /monitor. CSV mode wins over ids when both are given."""

    transaction_ids: List[str] = Field(default_factory=list, description="Stored transactions to score, in order")
    csv: Optional[str] = Field(None, description="Inline CSV text")
    csv_demo: bool = Field(False, description="Score the configured demo CSV file")
    limit: Optional[int] = Field(None, ge=1, description="Maximum number of CSV rows to process")

    @field_validator("transaction_ids", mode="before")
    @classmethod
    def _single_id(cls, value: Union[str, List[str], None]) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @property
    def csv_mode(self) -> bool:
        return bool(self.csv) or self.csv_demo


class RegulatoryStateSlice(BaseModel):
    """Regulatory collections carried between scrape calls."""

    regulatory_cursor: Optional[str] = None
    regulatory_candidates: List[RegulatoryCandidate] = Field(default_factory=list)
    regulatory_documents: List[RegulatoryDocument] = Field(default_factory=list)
    rule_proposals: List[RuleProposal] = Field(default_factory=list)
    regulatory_versions: List[RegulatoryVersionRecord] = Field(default_factory=list)
    regulatory_snippets: List[RegulatorySnippet] = Field(default_factory=list)

    @classmethod
    def from_state(cls, state: SentinelState) -> "RegulatoryStateSlice":
        return cls(
            regulatory_cursor=state.cursor,
            regulatory_candidates=state.candidates,
            regulatory_documents=state.documents,
            rule_proposals=state.proposals,
            regulatory_versions=state.versions,
            regulatory_snippets=state.snippets,
        )


class RegulatoryRequest(BaseModel):
    """Body of POST /regulatory/scrape and POST /regulatory/stream."""

    regulators: Optional[List[str]] = None
    cursor: Optional[str] = None
    transaction_id: Optional[str] = None
    state: Optional[RegulatoryStateSlice] = None

    @field_validator("regulators")
    @classmethod
    def _normalize_regulators(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        codes = [code.strip().upper() for code in value if code and code.strip()]
        return codes or None

    def initial_state(self) -> SentinelState:
        """Standalone regulatory state: score pinned to 1, no transaction."""
        previous = self.state or RegulatoryStateSlice()
        return SentinelState(
            transaction_id=self.transaction_id or REGULATORY_ONLY_TRANSACTION,
            score=1.0,
            cursor=previous.regulatory_cursor or self.cursor,
            candidates=previous.regulatory_candidates,
            documents=previous.regulatory_documents,
            proposals=previous.rule_proposals,
            versions=previous.regulatory_versions,
            snippets=previous.regulatory_snippets,
        )


class RegulatoryScrapeResponse(BaseModel):
    run_id: str
    regulators: List[str]
    state: RegulatoryStateSlice
    events: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    service: str = "sentinel"
    version: str
    timestamp: str
    components: Dict[str, str] = Field(default_factory=dict)
