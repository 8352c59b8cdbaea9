"""Alert emission for a finished run."""

from typing import Optional

import structlog

from .events import now_ms
from .interfaces import RegulatoryStore
from .models import SentinelAlert, SentinelState, Severity

logger = structlog.get_logger(__name__)

HIGH_SEVERITY_SCORE = 0.7
MEDIUM_SEVERITY_SCORE = 0.4


def severity_for(score: float) -> Severity:
    if score >= HIGH_SEVERITY_SCORE:
        return "high"
    if score >= MEDIUM_SEVERITY_SCORE:
        return "medium"
    return "low"


def build_alert(state: SentinelState, timestamp_ms: Optional[int] = None) -> SentinelAlert:
    """Build the run's alert from the final score, hits and snippets."""
    return SentinelAlert(
        id=f"alt_{state.transaction_id}_{timestamp_ms or now_ms()}",
        severity=severity_for(state.score),
        payload={
            "transaction_id": state.transaction_id,
            "score": state.score,
            "rule_hits": [hit.model_dump() for hit in state.rule_hits],
            "regulatory_snippets": [snippet.model_dump() for snippet in state.snippets],
        },
    )


async def persist_alert(store: Optional[RegulatoryStore], alert: SentinelAlert) -> bool:
    """Write the alert to the store. Failures are logged, never raised."""
    if store is None:
        return False
    try:
        await store.insert_alert(
            {
                "id": alert.id,
                "transaction_id": alert.payload.get("transaction_id"),
                "severity": alert.severity,
                "payload": alert.payload,
            }
        )
    except Exception as e:
        logger.warning("alert_persist_failed", alert_id=alert.id, error=str(e))
        return False
    return True
