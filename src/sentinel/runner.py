"""
Sentinel runner: transaction -> (conditional) regulatory -> alert.

The run is an explicit state machine over ``Stage``. Each stage emits
``on_node_start`` / ``on_node_end`` around its work; a failing stage becomes an
``on_error`` event followed by a closing ``on_node_end`` and the run moves on, so
every run reaches the alert stage.
Only cancellation stops a run early.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

import structlog

from .alert import build_alert, persist_alert
from .cancellation import CancellationToken
from .errors import CancelledRunError
from .events import EventChannel, RunLogSink, now_ms
from .interfaces import RegulatoryStore
from .logger import log_run_end, log_run_start, log_stage_end, log_stage_error
from .metrics import sentinel_runs_total, stage_errors_total, stage_latency_ms
from .models import RuleHit, SentinelState
from .regulatory.orchestrator import RegulatoryDelta, RegulatoryOrchestrator
from .regulatory.utils import new_by_key
from .scorer import TransactionScorer

logger = structlog.get_logger(__name__)

DEFAULT_REGULATORY_THRESHOLD = 0.65


class Stage(str, Enum):
    TRANSACTION = "transaction"
    REGULATORY = "regulatory"
    ALERT = "alert"
    DONE = "done"


TRANSITIONS: Dict[Stage, Tuple[Stage, ...]] = {
    Stage.TRANSACTION: (Stage.REGULATORY, Stage.ALERT),
    Stage.REGULATORY: (Stage.ALERT,),
    Stage.ALERT: (Stage.DONE,),
    Stage.DONE: (),
}


def next_stage(stage: Stage, state: SentinelState, threshold: float = DEFAULT_REGULATORY_THRESHOLD) -> Stage:
    """
    Pick the successor of ``stage``.

    The regulatory stage is entered only when the score reaches ``threshold``.

    Raises:
        ValueError: If ``stage`` is terminal
    """
    if stage is Stage.TRANSACTION:
        successor = Stage.REGULATORY if state.score >= threshold else Stage.ALERT
    elif stage is Stage.REGULATORY:
        successor = Stage.ALERT
    elif stage is Stage.ALERT:
        successor = Stage.DONE
    else:
        raise ValueError(f"No transition out of stage {stage.value}")

    if successor not in TRANSITIONS[stage]:
        raise ValueError(f"Illegal transition {stage.value} -> {successor.value}")
    return successor


def new_run_id() -> str:
    return f"sentinel_{now_ms()}"


def _hit_key(hit: RuleHit) -> str:
    return f"{hit.rule_id}|{hit.rationale}|{hit.weight}"


StageHandler = Callable[
    [SentinelState, EventChannel, CancellationToken, Optional[Sequence[str]]],
    Awaitable[Tuple[SentinelState, Dict[str, Any]]],
]


class SentinelRunner:
    """Drives one transaction through the Sentinel stages."""

    def __init__(
        self,
        scorer: TransactionScorer,
        orchestrator: RegulatoryOrchestrator,
        store: Optional[RegulatoryStore] = None,
        threshold: float = DEFAULT_REGULATORY_THRESHOLD,
    ):
        self.scorer = scorer
        self.orchestrator = orchestrator
        self.store = store
        self.threshold = threshold
        self._handlers: Dict[Stage, StageHandler] = {
            Stage.TRANSACTION: self._run_transaction,
            Stage.REGULATORY: self._run_regulatory,
            Stage.ALERT: self._run_alert,
        }

    def channel_for(self, run_id: Optional[str] = None) -> EventChannel:
        """A fresh channel that mirrors events into the run log when a store is set."""
        subscribers = [RunLogSink(self.store)] if self.store is not None else []
        return EventChannel(run_id or new_run_id(), subscribers)

    async def run(
        self,
        state: SentinelState,
        channel: Optional[EventChannel] = None,
        cancel: Optional[CancellationToken] = None,
        regulator_codes: Optional[Sequence[str]] = None,
    ) -> SentinelState:
        """
        Run every applicable stage over ``state`` and return the final state.

        Raises:
            CancelledRunError: If ``cancel`` fires before the run finishes
        """
        channel = channel or self.channel_for()
        cancel = cancel or CancellationToken()
        run_id = channel.run_id
        started = time.monotonic()
        log_run_start(logger, run_id, state.transaction_id, self.threshold)

        stage = Stage.TRANSACTION
        while stage is not Stage.DONE:
            cancel.raise_if_cancelled()
            stage_started = time.monotonic()
            try:
                state, details = await self._handlers[stage](state, channel, cancel, regulator_codes)
            except CancelledRunError:
                raise
            except Exception as e:
                stage_errors_total.labels(stage=stage.value).inc()
                log_stage_error(logger, run_id, stage.value, str(e))
                await channel.error(stage.value, str(e), error_type=type(e).__name__)
                await channel.node_end(stage.value, {"status": "failed", "error": str(e)})
            else:
                duration_ms = int((time.monotonic() - stage_started) * 1000)
                stage_latency_ms.labels(stage=stage.value).observe(duration_ms)
                log_stage_end(logger, run_id, stage.value, duration_ms, details)
            stage = next_stage(stage, state, self.threshold)

        severity = state.alert.severity if state.alert else None
        sentinel_runs_total.labels(severity=severity or "none").inc()
        log_run_end(logger, run_id, state.score, severity, int((time.monotonic() - started) * 1000))
        return state

    async def _run_transaction(
        self,
        state: SentinelState,
        channel: EventChannel,
        cancel: CancellationToken,
        regulator_codes: Optional[Sequence[str]],
    ) -> Tuple[SentinelState, Dict[str, Any]]:
        node = Stage.TRANSACTION.value
        await channel.node_start(node, {"transaction_id": state.transaction_id})

        update = await self.scorer.score(state, cancel)
        known_hits = state.rule_hits
        state = state.apply(update)

        for hit in new_by_key(known_hits, state.rule_hits, _hit_key):
            await channel.tool_call(
                node,
                {
                    "tool": "llm",
                    "rule_id": hit.rule_id,
                    "rationale": hit.rationale,
                    "weight": hit.weight,
                    "score_partial": state.score,
                },
            )

        await channel.node_end(
            node,
            {
                "score": state.score,
                "rule_hits": [hit.model_dump() for hit in state.rule_hits],
                "origin": self.scorer.origin,
                "model": self.scorer.model,
            },
        )
        return state, {"score": state.score, "rule_hits": len(state.rule_hits)}

    async def _run_regulatory(
        self,
        state: SentinelState,
        channel: EventChannel,
        cancel: CancellationToken,
        regulator_codes: Optional[Sequence[str]],
    ) -> Tuple[SentinelState, Dict[str, Any]]:
        node = Stage.REGULATORY.value
        await channel.node_start(node, {"rule_hits": [hit.model_dump() for hit in state.rule_hits]})

        before = state
        update = await self.orchestrator.run(state, channel, cancel, regulator_codes)
        state = state.apply(update)

        delta = RegulatoryDelta(before, state)
        counts = delta.counts()

        await channel.node_end(
            node,
            {**counts, "snippets_new": [snippet.model_dump() for snippet in update.snippets]},
        )
        if delta.proposals:
            await channel.artifact(
                node,
                {
                    "type": "regulatory_rule_proposals",
                    "proposals": [proposal.model_dump() for proposal in delta.proposals],
                },
            )
        if delta.versions:
            await channel.artifact(
                node,
                {
                    "type": "regulatory_rule_versions",
                    "versions": [version.model_dump() for version in delta.versions],
                },
            )
        return state, counts

    async def _run_alert(
        self,
        state: SentinelState,
        channel: EventChannel,
        cancel: CancellationToken,
        regulator_codes: Optional[Sequence[str]],
    ) -> Tuple[SentinelState, Dict[str, Any]]:
        node = Stage.ALERT.value
        await channel.node_start(node, {"score": state.score})

        alert = build_alert(state)
        await persist_alert(self.store, alert)
        state = state.model_copy(update={"alert": alert})

        alert_data = alert.model_dump(by_alias=True)
        await channel.artifact(node, {"alert": alert_data})
        await channel.node_end(node, {"alert": alert_data})
        return state, {"severity": alert.severity}


def summarize_state(state: SentinelState) -> Dict[str, Any]:
    """JSON-ready regulatory slice of a state."""
    return {
        "regulatory_candidates": [c.model_dump() for c in state.candidates],
        "regulatory_documents": [d.model_dump() for d in state.documents],
        "rule_proposals": [p.model_dump() for p in state.proposals],
        "regulatory_versions": [v.model_dump() for v in state.versions],
        "regulatory_snippets": [s.model_dump() for s in state.snippets],
        "regulatory_cursor": state.cursor,
    }
