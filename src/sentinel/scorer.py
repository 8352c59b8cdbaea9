"""
LLM-backed single-transaction AML scorer.

The model is given a fixed rule catalog, a strict JSON schema and per-field
mapping guidance, and must answer with ``{"rule_hits": [...], "score": n}``.
Its answer is sanitized before it touches the run state.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional

import structlog

from .cancellation import CancellationToken
from .errors import ParseError
from .interfaces import LLMClient, RegulatoryStore
from .metrics import rule_hits_total
from .models import MAX_RATIONALE_LENGTH, RuleHit, SentinelState, StateUpdate, Transaction

logger = structlog.get_logger(__name__)

RULE_CATALOG: List[str] = [
    "txn:large_amount",
    "cash:large_cash_deposit",
    "cash:velocity_structuring",
    "screening:sanctions_potential",
    "kyc:pep",
    "kyc:customer_high_risk",
    "kyc:customer_medium_risk",
    "corridor:high_risk_country",
    "compliance:travel_rule_incomplete",
    "swift:missing_mandatory_fields",
    "swift:unusual_charges_code",
    "fx:unusual_spread",
    "txn:odd_tail",
    "kyc:edd_missing",
    "kyc:overdue",
    "str:suspicion_recorded",
]

# Transaction meta keys surfaced to the model
CONTEXT_META_FIELDS = [
    "booking_jurisdiction",
    "regulator",
    "booking_datetime",
    "value_date",
    "channel",
    "product_type",
    "originator_country",
    "beneficiary_country",
    "sanctions_screening",
    "customer_type",
    "customer_risk_rating",
    "customer_is_pep",
    "travel_rule_complete",
    "swift_f50_present",
    "swift_f59_present",
    "swift_f71_charges",
    "daily_cash_total_customer",
    "daily_cash_txn_count",
    "fx_indicator",
    "fx_spread_bps",
    "edd_required",
    "edd_performed",
    "kyc_last_completed",
    "kyc_due_date",
    "suspicion_determined_datetime",
    "str_filed_datetime",
    "purpose_code",
    "narrative",
]

SYSTEM_PROMPT = "\n".join(
    [
        "You are a bank-grade AML Transaction Analysis agent.",
        "Level 1 focus only: derive AML signals from a single transaction's raw data (no Level 2+).",
        "Evaluate a single transaction and produce structured outputs strictly as JSON.",
        "Follow these rules:",
        "- Only pick rule_ids from the provided RULE_CATALOG when applicable.",
        "- Each rule hit MUST include a brief rationale (<= 160 chars) and a weight between 0.05 and 0.5.",
        "- Compute a final score in [0,1] as an aggregate of weights with light dampening if many minor hits.",
        "- Be conservative: use only the provided fields; if data is missing, avoid speculative hits.",
        "- Do not include personally identifying details in rationales.",
        "- If suspicion_determined_datetime is present, include str:suspicion_recorded.",
        "Return ONLY valid JSON per the schema with no markdown fences.",
    ]
)

OUTPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["rule_hits", "score"],
    "properties": {
        "rule_hits": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["rule_id", "rationale", "weight"],
                "properties": {
                    "rule_id": {"type": "string", "enum": RULE_CATALOG},
                    "rationale": {"type": "string"},
                    "weight": {"type": "number", "minimum": 0.05, "maximum": 0.5},
                },
            },
        },
        "score": {"type": "number", "minimum": 0, "maximum": 1},
    },
}

GUIDANCE: Dict[str, Any] = {
    "transactional": {
        "ask": "How are funds moved and how much?",
        "fields": ["channel", "product_type", "amount", "currency"],
        "indicators": [
            "cash deposits (placement risk)",
            "cross-border wires (layering)",
            "structuring: repetitive similar/round amounts",
            "single large amounts inconsistent with profile",
        ],
    },
    "geographic": {
        "ask": "Are parties in high-risk jurisdictions?",
        "fields": ["originator_country", "beneficiary_country"],
        "examples": ["IR", "RU"],
    },
    "customer": {
        "ask": "Is entity type high-risk or behavior anomalous?",
        "fields": ["customer_type", "customer_id"],
        "indicators": ["domiciliary_company / shell", "repeated high-risk corridors"],
    },
    "screening": {
        "ask": "Did screening/STR indicators trigger?",
        "fields": ["sanctions_screening", "suspicion_determined_datetime", "str_filed_datetime"],
    },
    "controls": {
        "ask": "Were KYC/EDD controls met?",
        "fields": ["kyc_due_date", "booking_datetime", "value_date", "edd_required", "edd_performed"],
    },
}

RULE_MAPPINGS: Dict[str, str] = {
    "sanctions_screening": "if not 'clear' or 'none' => screening:sanctions_potential",
    "suspicion_determined_datetime": "if present => str:suspicion_recorded",
    "travel_rule_complete": "if false => compliance:travel_rule_incomplete",
    "swift_fields": "if swift_f50_present=false or swift_f59_present=false => swift:missing_mandatory_fields",
    "swift_charges": "if swift_f71_charges in ['BEN','SHA'] => swift:unusual_charges_code",
    "pep": "if customer_is_pep=true => kyc:pep",
    "customer_risk": "if high => kyc:customer_high_risk; if medium => kyc:customer_medium_risk",
    "corridor": "if originator or beneficiary in high-risk (e.g., IR, RU) => corridor:high_risk_country",
    "fx": "if fx_spread_bps is materially high (e.g., >50bps) => fx:unusual_spread",
    "kyc_overdue": "if kyc_due_date < booking_datetime/value_date => kyc:overdue",
    "edd_missing": "if edd_required=true and edd_performed=false => kyc:edd_missing",
    "cash_velocity": "use daily_cash_total_customer / daily_cash_txn_count with cash channel => cash:velocity_structuring",
    "cash_large": "cash channel + large amount (jurisdiction-aware) => cash:large_cash_deposit",
    "large_amount": "large amount (jurisdiction-aware) => txn:large_amount",
    "odd_tail": "round-number amount pattern => txn:odd_tail",
}

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _primitive(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return None


def to_number(value: Any) -> Optional[float]:
    """Finite float for numbers and numeric strings; None otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def build_transaction_context(transaction: Optional[Transaction], transaction_id: Optional[str]) -> Dict[str, Any]:
    """Flatten a transaction into the primitive-valued context the model sees."""
    meta = transaction.meta if transaction else {}
    context: Dict[str, Any] = {
        "transaction_id": transaction.id if transaction else transaction_id,
        "amount": to_number(transaction.amount if transaction else meta.get("amount")) or 0,
        "currency": transaction.currency if transaction else None,
        "customer_id": transaction.customer_id if transaction else None,
    }
    for key in CONTEXT_META_FIELDS:
        context[key] = _primitive(meta.get(key))
    return context


def build_user_prompt(context: Dict[str, Any]) -> str:
    return json.dumps(
        {
            "RULE_CATALOG": RULE_CATALOG,
            "SCHEMA": OUTPUT_SCHEMA,
            "GUIDANCE": GUIDANCE,
            "RULE_MAPPINGS": RULE_MAPPINGS,
            "CONTEXT": context,
        },
        default=str,
    )


def parse_model_output(text: str) -> Dict[str, Any]:
    """
    Parse the model's answer, tolerating prose around the JSON object.

    Raises:
        ParseError: If no JSON object can be recovered or ``rule_hits`` is missing
    """
    parsed: Any = None
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        match = _JSON_OBJECT_RE.search(text or "")
        if match:
            try:
                parsed = json.loads(match.group(0))
            except ValueError:
                parsed = None

    if not isinstance(parsed, dict) or not isinstance(parsed.get("rule_hits"), list):
        raise ParseError("LLM returned invalid transaction analysis JSON")
    return parsed


def sanitize_rule_hits(candidate: Any) -> List[RuleHit]:
    """Keep only well-formed hits on catalog rules."""
    if not isinstance(candidate, list):
        return []

    hits = []
    for entry in candidate:
        if not isinstance(entry, dict):
            continue
        rule_id = entry.get("rule_id")
        rationale = entry.get("rationale")
        if not isinstance(rule_id, str) or rule_id not in RULE_CATALOG:
            continue
        if not isinstance(rationale, str):
            continue
        weight = to_number(entry.get("weight"))
        if weight is None:
            continue
        hits.append(RuleHit(rule_id=rule_id, rationale=rationale[:MAX_RATIONALE_LENGTH], weight=weight))
    return hits


def clamp_score(value: Any) -> float:
    number = to_number(value)
    if number is None:
        return 0.0
    return max(0.0, min(1.0, number))


class TransactionScorer:
    """Scores one transaction per call through an injected LLM client."""

    origin = "llm"

    def __init__(self, llm: LLMClient, store: Optional[RegulatoryStore] = None):
        self.llm = llm
        self.store = store

    @property
    def model(self) -> Optional[str]:
        return getattr(self.llm, "model", None)

    async def _load_transaction(self, state: SentinelState) -> Optional[Transaction]:
        if state.transaction is not None:
            return state.transaction
        if self.store is None or not state.transaction_id:
            return None
        try:
            row = await self.store.get_transaction(state.transaction_id)
        except Exception as e:
            logger.warning("transaction_lookup_failed", transaction_id=state.transaction_id, error=str(e))
            return None
        return Transaction.from_row(row) if row else None

    async def score(
        self,
        state: SentinelState,
        cancel: Optional[CancellationToken] = None,
    ) -> StateUpdate:
        """
        Evaluate the state's transaction.

        Returns an update with the loaded transaction, the existing rule hits
        plus the new ones, and the clamped score.

        Raises:
            LLMConfigError: If the LLM client has no credential
            ParseError: If the model output is not the expected JSON shape
        """
        transaction = await self._load_transaction(state)
        context = build_transaction_context(transaction, state.transaction_id)

        text = await self.llm.complete(SYSTEM_PROMPT, build_user_prompt(context), cancel=cancel)
        parsed = parse_model_output(text)

        hits = sanitize_rule_hits(parsed["rule_hits"])
        score = clamp_score(parsed.get("score"))
        for hit in hits:
            rule_hits_total.labels(rule_id=hit.rule_id).inc()

        logger.info(
            "transaction_scored",
            transaction_id=context["transaction_id"],
            score=score,
            hits=[hit.rule_id for hit in hits],
            model=self.model,
        )
        return StateUpdate(transaction=transaction, rule_hits=list(state.rule_hits) + hits, score=score)
