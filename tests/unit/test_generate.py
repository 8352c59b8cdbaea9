"""Unit tests for draft rule proposal generation."""

import pytest

from sentinel.models import ProposalDiff, RegulatoryDocument, RuleProposal
from sentinel.regulatory.generate import build_proposal, generate_rule_proposals, is_settled
from sentinel.regulatory.utils import hash_content

URL = "https://reg.example.org/circulars/aml-2024-01"
CONTENT = (
    "Circular on customer due diligence. "
    "Financial institutions must perform enhanced due diligence on high-risk customers. "
    "This circular is effective 1 May 2024."
)


@pytest.fixture
def regulatory_document():
    """Extracted document with one requirement and an effective date."""
    return RegulatoryDocument(url=URL, regulator="TEST", title="AML circular", content=CONTENT)


class TestBuildProposal:
    """Test proposal construction from a document."""

    def test_proposal_fields(self, regulatory_document):
        """Test id, summary, criteria, effective date and hash."""
        proposal = build_proposal(regulatory_document, hash_content(CONTENT))

        assert proposal.id == "test_reg-example-org-circulars-aml-2024-01"
        assert proposal.status == "pending_approval"
        assert proposal.summary.startswith("Circular on customer due diligence.")
        assert proposal.criteria == [
            {
                "type": "requirement",
                "requirement": "Financial institutions must perform enhanced due diligence on high-risk customers.",
                "rationale": "AML circular",
            }
        ]
        assert proposal.effective_date == "2024-05-01"
        assert proposal.diff.content_hash == hash_content(CONTENT)
        assert proposal.rule_version_id is None

    def test_summary_is_truncated(self):
        """Test summaries keep at most the first 400 characters."""
        document = RegulatoryDocument(url=URL, regulator="TEST", content="word " * 200)
        assert len(build_proposal(document, "h").summary) <= 400


class TestSettled:
    """Test the settled-proposal rule."""

    def test_settled_requires_version(self):
        """Test a matching hash alone does not settle a proposal."""
        proposal = RuleProposal(id="p", regulator="TEST", document_url=URL, diff=ProposalDiff(content_hash="h"))

        assert is_settled(proposal, "h") is False
        assert is_settled(proposal.model_copy(update={"rule_version_id": "v1"}), "h") is True
        assert is_settled(proposal.model_copy(update={"rule_version_id": "v1"}), "other") is False


class TestGenerateRuleProposals:
    """Test proposal generation across passes."""

    @pytest.mark.asyncio
    async def test_new_document_creates_proposal(self, stage_context, regulatory_document, buffer):
        """Test one proposal is produced per document."""
        outcome = await generate_rule_proposals(stage_context, [regulatory_document], [])

        assert len(outcome.new_proposals) == 1
        assert outcome.snippets[0].level == "success"
        assert [e.type for e in buffer.events] == ["on_node_start", "on_node_end"]

    @pytest.mark.asyncio
    async def test_versioned_identical_content_is_skipped(self, stage_context, regulatory_document):
        """Test a document whose proposal is versioned from the same content is skipped."""
        settled = build_proposal(regulatory_document, hash_content(CONTENT)).model_copy(
            update={"rule_version_id": "v1"}
        )

        outcome = await generate_rule_proposals(stage_context, [regulatory_document], [settled])

        assert outcome.new_proposals == []
        assert outcome.proposals == [settled]

    @pytest.mark.asyncio
    async def test_unversioned_proposal_is_rebuilt(self, stage_context, regulatory_document):
        """Test an unversioned proposal with the same hash is regenerated for retry."""
        pending = build_proposal(regulatory_document, hash_content(CONTENT))

        outcome = await generate_rule_proposals(stage_context, [regulatory_document], [pending])

        assert len(outcome.new_proposals) == 1
        assert len(outcome.proposals) == 1

    @pytest.mark.asyncio
    async def test_changed_content_replaces_proposal(self, stage_context, regulatory_document):
        """Test changed content produces a replacement proposal with the new hash."""
        settled = build_proposal(regulatory_document, hash_content("older text")).model_copy(
            update={"rule_version_id": "v1"}
        )

        outcome = await generate_rule_proposals(stage_context, [regulatory_document], [settled])

        assert len(outcome.proposals) == 1
        assert outcome.proposals[0].diff.content_hash == hash_content(CONTENT)
        assert outcome.proposals[0].rule_version_id is None

    @pytest.mark.asyncio
    async def test_no_documents(self, stage_context, buffer):
        """Test no documents means no events."""
        outcome = await generate_rule_proposals(stage_context, [], [])

        assert outcome.new_proposals == []
        assert buffer.events == []
