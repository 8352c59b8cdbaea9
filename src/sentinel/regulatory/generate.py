"""Rule generator: derives draft rule proposals from extracted documents."""

from dataclasses import dataclass, field
from typing import Dict, List

import structlog

from ..models import ProposalDiff, RegulatoryDocument, RegulatorySnippet, RuleProposal
from .constants import SUMMARY_LENGTH
from .context import StageContext
from .text_analysis import collapse_whitespace, extract_criteria, extract_effective_date
from .utils import hash_content, make_rule_id, make_snippet, merge_proposals

logger = structlog.get_logger(__name__)

NODE = "rule_generate"


@dataclass
class GenerateOutcome:
    proposals: List[RuleProposal]
    new_proposals: List[RuleProposal]
    snippets: List[RegulatorySnippet] = field(default_factory=list)


def is_settled(existing: RuleProposal, content_hash: str) -> bool:
    """A proposal is settled when it was versioned from exactly this content."""
    return existing.diff.content_hash == content_hash and existing.rule_version_id is not None


def build_proposal(document: RegulatoryDocument, content_hash: str) -> RuleProposal:
    title = document.title or document.url
    return RuleProposal(
        id=make_rule_id(document.regulator, document.url),
        regulator=document.regulator or "Unknown",
        document_url=document.url,
        document_title=document.title,
        status="pending_approval",
        summary=collapse_whitespace(document.content[:SUMMARY_LENGTH]),
        criteria=extract_criteria(document.content, rationale=title),
        effective_date=extract_effective_date(document.content),
        diff=ProposalDiff(content_hash=content_hash),
        document_id=document.document_id,
    )


async def generate_rule_proposals(
    ctx: StageContext,
    documents: List[RegulatoryDocument],
    existing: List[RuleProposal],
) -> GenerateOutcome:
    """
    Build one draft proposal per document unless it is already settled.

    Documents whose proposal was versioned from identical content are
    skipped; unversioned proposals with a matching hash are rebuilt so a
    failed persistence attempt is retried on the next pass.
    """
    if not documents:
        return GenerateOutcome(proposals=list(existing), new_proposals=[])

    await ctx.channel.node_start(NODE, {"document_count": len(documents)})

    by_id: Dict[str, RuleProposal] = {proposal.id: proposal for proposal in existing}
    new_proposals: List[RuleProposal] = []
    snippets: List[RegulatorySnippet] = []

    for document in documents:
        content_hash = hash_content(document.content)
        proposal_id = make_rule_id(document.regulator, document.url)
        current = by_id.get(proposal_id)
        if current is not None and is_settled(current, content_hash):
            logger.debug("proposal_unchanged", proposal_id=proposal_id)
            continue

        proposal = build_proposal(document, content_hash)
        new_proposals.append(proposal)
        by_id[proposal_id] = proposal
        snippets.append(
            make_snippet(
                proposal_id,
                f'Draft rule proposal prepared for {proposal.regulator} source "{document.title or document.url}".',
                source_url=document.url,
                level="success",
            )
        )

    proposals = merge_proposals(existing, new_proposals)
    await ctx.channel.node_end(NODE, {"proposals_total": len(proposals), "proposals_new": len(new_proposals)})

    return GenerateOutcome(proposals=proposals, new_proposals=new_proposals, snippets=snippets)
