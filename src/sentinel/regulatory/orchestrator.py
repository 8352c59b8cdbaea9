"""
Regulatory orchestrator: scan -> extract -> generate -> version.

Each stage's merged output is threaded into the next. Proposals left
unversioned by an earlier pass are versioned again on every pass, even when
the scan finds nothing new. The orchestrator never raises (except on
cancellation); failures become snippets plus an ``on_error`` event and
whatever was produced before the failure is returned.
"""

from typing import Dict, List, Optional, Sequence

import structlog

from ..cancellation import CancellationToken
from ..errors import CancelledRunError, SearchConfigError
from ..events import EventChannel, now_ms
from ..models import RegulatoryVersionRecord, RuleProposal, SentinelState, StateUpdate
from .constants import REGULATOR_CONFIGS, REGULATORY_NODE, RegulatorConfig
from .context import RegulatoryServices, StageContext
from .extract import extract_regulatory_documents
from .generate import generate_rule_proposals
from .scan import scan_regulatory_sources
from .utils import make_snippet, merge_by_url, merge_proposals, merge_versions, new_by_key
from .version import pending_proposals, version_rule_proposals

logger = structlog.get_logger(__name__)

SEARCH_NOT_CONFIGURED = "Tavily API key not configured; skipping regulatory scan."


def select_configs(
    codes: Optional[Sequence[str]],
    configs: Sequence[RegulatorConfig] = REGULATOR_CONFIGS,
) -> List[RegulatorConfig]:
    """Filter configs by regulator code, case-insensitively. No codes means all."""
    requested = [code.strip().upper() for code in (codes or []) if code and code.strip()]
    if not requested:
        return list(configs)
    return [config for config in configs if config.code.upper() in requested]


def new_regulatory_run_id() -> str:
    return f"regulatory_{now_ms()}"


def normalize_codes(codes: Optional[Sequence[str]]) -> List[str]:
    return [code.strip().upper() for code in (codes or []) if isinstance(code, str) and code.strip()]


def _proposal_key(proposal: RuleProposal) -> str:
    # a regenerated proposal keeps its id but carries a new content hash
    return f"{proposal.id}|{proposal.diff.content_hash}"


class RegulatoryDelta:
    """Key-set differences between two states' regulatory collections."""

    def __init__(self, before: SentinelState, after: SentinelState):
        self.after = after
        self.candidates = new_by_key(before.candidates, after.candidates, lambda c: c.url)
        self.documents = new_by_key(before.documents, after.documents, lambda d: d.url)
        self.proposals: List[RuleProposal] = new_by_key(before.proposals, after.proposals, _proposal_key)
        self.versions: List[RegulatoryVersionRecord] = new_by_key(
            before.versions, after.versions, lambda v: v.rule_version_id
        )

    def counts(self) -> Dict[str, int]:
        return {
            "candidates_total": len(self.after.candidates),
            "candidates_new": len(self.candidates),
            "documents_total": len(self.after.documents),
            "documents_new": len(self.documents),
            "proposals_total": len(self.after.proposals),
            "proposals_new": len(self.proposals),
            "versions_total": len(self.after.versions),
            "versions_new": len(self.versions),
        }


class RegulatoryOrchestrator:
    """Runs one pass of the regulatory sub-pipeline over a state's collections."""

    def __init__(
        self,
        services: RegulatoryServices,
        configs: Optional[Sequence[RegulatorConfig]] = None,
    ):
        self.services = services
        self.configs = list(configs) if configs is not None else list(REGULATOR_CONFIGS)

    async def run(
        self,
        state: SentinelState,
        channel: EventChannel,
        cancel: Optional[CancellationToken] = None,
        regulator_codes: Optional[Sequence[str]] = None,
    ) -> StateUpdate:
        codes = normalize_codes(regulator_codes)
        active = select_configs(codes, self.configs)

        if codes and not active:
            return StateUpdate(
                snippets=[
                    make_snippet(
                        f"reg_config_missing_{now_ms()}",
                        f"No regulator configuration found for codes: {', '.join(codes)}",
                        level="warning",
                    )
                ]
            )

        ctx = StageContext(
            channel=channel,
            services=self.services,
            cancel=cancel or CancellationToken(),
            configs=active,
        )
        update = StateUpdate()
        snippets = []

        try:
            scan = await scan_regulatory_sources(ctx, state.candidates, state.cursor, active)
            snippets.extend(scan.snippets)
            update.candidates = scan.candidates
            update.cursor = scan.cursor
            documents = state.documents
            proposals = state.proposals

            if scan.new_candidates:
                extracted = await extract_regulatory_documents(
                    ctx, scan.new_candidates, state.documents, scan.candidates
                )
                snippets.extend(extracted.snippets)
                update.candidates = extracted.candidates
                update.documents = documents = extracted.documents

                if extracted.new_documents:
                    generated = await generate_rule_proposals(ctx, extracted.new_documents, proposals)
                    snippets.extend(generated.snippets)
                    update.proposals = proposals = generated.proposals

            # includes proposals an earlier pass failed to version
            pending = pending_proposals(proposals, documents)
            if not pending:
                return self._finish(update, snippets)

            versioned = await version_rule_proposals(ctx, pending, documents)
            snippets.extend(versioned.snippets)
            update.documents = merge_by_url(documents, versioned.documents)
            update.proposals = merge_proposals(proposals, versioned.proposals)
            update.versions = merge_versions(state.versions, versioned.versions)
            return self._finish(update, snippets)

        except CancelledRunError:
            raise
        except Exception as e:
            if isinstance(e, SearchConfigError):
                message, level = SEARCH_NOT_CONFIGURED, "warning"
            else:
                message, level = f"Regulatory agent encountered an error: {e}", "error"
            logger.error("regulatory_pass_failed", run_id=channel.run_id, error=str(e), error_type=type(e).__name__)
            snippets.append(make_snippet(f"regulatory_error_{now_ms()}", message, level=level))
            await channel.error(REGULATORY_NODE, message)
            return self._finish(update, snippets)

    @staticmethod
    def _finish(update: StateUpdate, snippets) -> StateUpdate:
        update.snippets = list(snippets)
        return update

    async def run_standalone(
        self,
        state: SentinelState,
        channel: EventChannel,
        cancel: Optional[CancellationToken] = None,
        regulator_codes: Optional[Sequence[str]] = None,
    ) -> SentinelState:
        """
        Run one pass outside the Sentinel runner and return the merged state.

        The pass is bracketed by ``regulatory`` node start/end events, the same
        way the runner brackets its regulatory stage.
        """
        await channel.node_start(
            REGULATORY_NODE,
            {"regulators": normalize_codes(regulator_codes) or None, "cursor": state.cursor},
        )
        update = await self.run(state, channel, cancel, regulator_codes)
        final = state.apply(update)
        await channel.node_end(
            REGULATORY_NODE,
            {
                **RegulatoryDelta(state, final).counts(),
                "snippets_new": [snippet.model_dump() for snippet in update.snippets],
            },
        )
        return final
