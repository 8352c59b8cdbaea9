"""Pydantic models for transactions, regulatory artifacts and run state."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SnippetLevel = Literal["info", "success", "warning", "error"]
ContentType = Literal["html", "pdf", "unknown"]
ProposalStatus = Literal["draft", "pending_approval", "approved", "rejected"]
Severity = Literal["low", "medium", "high"]

MAX_SNIPPETS = 50
MAX_RATIONALE_LENGTH = 220

# Columns that map onto Transaction fields rather than meta
_TRANSACTION_COLUMNS = {"id", "transaction_id", "amount", "currency", "customer_id"}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Transaction(BaseModel):
    """A financial transaction as loaded into a run. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Transaction identifier")
    amount: float = Field(default=0.0, description="Transaction amount")
    currency: Optional[str] = Field(None, description="ISO currency code")
    customer_id: Optional[str] = Field(None, description="Customer identifier")
    meta: Dict[str, Any] = Field(
        default_factory=dict,
        description="Jurisdiction, KYC/EDD flags, SWIFT fields and other attributes",
    )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Transaction":
        """
        Build a transaction from a flat record (CSV row or store row).

        Known columns become fields; everything else lands in ``meta``. A row
        that already carries a ``meta`` dict is merged underneath the flat
        columns.
        """
        txn_id = row.get("transaction_id") or row.get("id")
        if not txn_id:
            raise ValueError("Transaction row has no id")

        amount = row.get("amount")
        try:
            amount = float(amount) if amount not in (None, "") else 0.0
        except (TypeError, ValueError):
            amount = 0.0

        meta: Dict[str, Any] = dict(row.get("meta") or {})
        for key, value in row.items():
            if key in _TRANSACTION_COLUMNS or key == "meta":
                continue
            meta[key] = value

        return cls(
            id=str(txn_id),
            amount=amount,
            currency=row.get("currency") or None,
            customer_id=row.get("customer_id") or None,
            meta=meta,
        )


class RuleHit(BaseModel):
    """A catalog rule flagged by the transaction scorer."""

    rule_id: str
    rationale: str = Field(..., max_length=MAX_RATIONALE_LENGTH)
    weight: float


class RegulatorySnippet(BaseModel):
    """Human-readable narration of a pipeline step."""

    rule_id: str
    text: str
    source_url: Optional[str] = None
    level: SnippetLevel = "info"


class RegulatoryCandidate(BaseModel):
    """A discovered, not yet fetched, regulatory source URL."""

    url: str
    regulator: str
    source: str = Field(..., description="tavily, mas_portal or mas_portal_pdf")
    title: Optional[str] = None
    summary: Optional[str] = None
    published_at: Optional[str] = None
    domain: Optional[str] = None
    source_hash: Optional[str] = None
    listing_topic: Optional[str] = None
    listing_content_type: Optional[str] = None
    parent_url: Optional[str] = None
    pdf_links: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RegulatoryDocument(BaseModel):
    """Full text fetched for a candidate."""

    url: str
    regulator: str
    content: str
    content_type: ContentType = "unknown"
    extracted_at: str = Field(default_factory=utc_now_iso)
    title: Optional[str] = None
    published_at: Optional[str] = None
    document_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)


class ProposalDiff(BaseModel):
    content_hash: str
    generated_at: str = Field(default_factory=utc_now_iso)


class RuleProposal(BaseModel):
    """Draft, reviewable compliance rule derived from one document."""

    id: str
    regulator: str
    document_url: str
    document_title: Optional[str] = None
    status: ProposalStatus = "draft"
    summary: str = ""
    criteria: List[Dict[str, Any]] = Field(default_factory=list)
    effective_date: Optional[str] = None
    diff: ProposalDiff
    rule_version_id: Optional[str] = None
    document_id: Optional[str] = None


class RegulatoryVersionRecord(BaseModel):
    """Ledger entry for a persisted rule version."""

    rule_version_id: str
    rule_id: str
    document_id: Optional[str] = None
    status: ProposalStatus = "pending_approval"
    regulator: Optional[str] = None
    source_url: Optional[str] = None
    effective_date: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)


class SentinelAlert(BaseModel):
    """Alert built once per run from the final state."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    severity: Severity
    payload: Dict[str, Any] = Field(default_factory=dict, alias="json")
    created_at: str = Field(default_factory=utc_now_iso)


class StateUpdate(BaseModel):
    """
    Partial result returned by a stage.

    Collection fields, when set, replace the state's collection (stages return
    already-merged collections). ``snippets`` is the exception: it holds only
    the snippets produced by the stage and is appended.
    """

    transaction: Optional[Transaction] = None
    rule_hits: Optional[List[RuleHit]] = None
    score: Optional[float] = None
    candidates: Optional[List[RegulatoryCandidate]] = None
    documents: Optional[List[RegulatoryDocument]] = None
    proposals: Optional[List[RuleProposal]] = None
    versions: Optional[List[RegulatoryVersionRecord]] = None
    snippets: List[RegulatorySnippet] = Field(default_factory=list)
    cursor: Optional[str] = None
    alert: Optional[SentinelAlert] = None


class SentinelState(BaseModel):
    """Accumulating record of a single Sentinel run."""

    transaction_id: Optional[str] = None
    transaction: Optional[Transaction] = None
    rule_hits: List[RuleHit] = Field(default_factory=list)
    score: float = 0.0
    candidates: List[RegulatoryCandidate] = Field(default_factory=list)
    documents: List[RegulatoryDocument] = Field(default_factory=list)
    proposals: List[RuleProposal] = Field(default_factory=list)
    versions: List[RegulatoryVersionRecord] = Field(default_factory=list)
    snippets: List[RegulatorySnippet] = Field(default_factory=list)
    cursor: Optional[str] = None
    alert: Optional[SentinelAlert] = None

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> float:
        try:
            value = float(value)
        except (TypeError, ValueError):
            return 0.0
        if value != value:  # NaN
            return 0.0
        return min(1.0, max(0.0, value))

    @field_validator("snippets")
    @classmethod
    def _cap_snippets(cls, value: List[RegulatorySnippet]) -> List[RegulatorySnippet]:
        return value[-MAX_SNIPPETS:]

    def apply(self, update: StateUpdate) -> "SentinelState":
        """Return a new state with ``update`` merged in."""
        changes: Dict[str, Any] = {
            name: getattr(update, name)
            for name in StateUpdate.model_fields
            if name != "snippets" and getattr(update, name) is not None
        }
        if update.snippets:
            changes["snippets"] = self.snippets + list(update.snippets)
        if changes.get("transaction") is not None and not self.transaction_id:
            changes["transaction_id"] = changes["transaction"].id
        # revalidate so the score clamp and snippet cap apply to merged values
        return SentinelState.model_validate({**self.model_dump(by_alias=True), **_dumped(changes)})


def _dumped(changes: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, BaseModel):
            out[key] = value.model_dump(by_alias=True)
        elif isinstance(value, list):
            out[key] = [v.model_dump(by_alias=True) if isinstance(v, BaseModel) else v for v in value]
        else:
            out[key] = value
    return out
