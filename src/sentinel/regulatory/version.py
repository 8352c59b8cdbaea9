"""
Rule versioner: persists draft proposals as immutable rule versions.

Each proposal is handled independently; a failed document or version write
leaves that proposal unversioned for a later pass without affecting others.
"""

from dataclasses import dataclass, field
from typing import Dict, List

import structlog

from ..errors import CancelledRunError
from ..models import RegulatoryDocument, RegulatorySnippet, RegulatoryVersionRecord, RuleProposal
from ..services.text_chunker import chunk_text
from .constants import MAX_CHUNKS_PER_DOCUMENT
from .context import StageContext
from .utils import hash_content, make_snippet, url_domain

logger = structlog.get_logger(__name__)

NODE = "rule_version"


@dataclass
class VersionOutcome:
    proposals: List[RuleProposal]
    documents: List[RegulatoryDocument]
    versions: List[RegulatoryVersionRecord]
    snippets: List[RegulatorySnippet] = field(default_factory=list)


def document_record(document: RegulatoryDocument, content_hash: str) -> Dict[str, object]:
    return {
        "type": "regulatory",
        "title": document.title,
        "url": document.url,
        "domain": url_domain(document.url),
        "published_at": document.published_at,
        "meta": {
            **document.meta,
            "regulator": document.regulator,
            "content_type": document.content_type,
            "extracted_at": document.extracted_at,
            "content_hash": content_hash,
        },
    }


def rule_version_record(proposal: RuleProposal, document_id: str) -> Dict[str, object]:
    return {
        "document_id": document_id,
        "regulator": proposal.regulator,
        "status": "pending_approval",
        "rule_json": {
            "id": proposal.id,
            "summary": proposal.summary,
            "criteria": proposal.criteria,
            "regulator": proposal.regulator,
            "document_url": proposal.document_url,
            "document_title": proposal.document_title,
            "effective_date": proposal.effective_date,
        },
        "diff": proposal.diff.model_dump(),
        "source_url": proposal.document_url,
        "effective_date": proposal.effective_date,
    }


async def _persist_document(
    ctx: StageContext,
    document: RegulatoryDocument,
    content_hash: str,
    snippets: List[RegulatorySnippet],
) -> str:
    """Upsert the document and store its leading chunks. Returns the document id."""
    store = ctx.services.store
    ctx.checkpoint()
    document_id = await store.upsert_document(document_record(document, content_hash))

    chunks = chunk_text(document.content)[:MAX_CHUNKS_PER_DOCUMENT]
    if chunks:
        ctx.checkpoint()
        try:
            await store.insert_chunks(
                document_id,
                [
                    {
                        "text": text,
                        "tags": document.tags,
                        "meta": {
                            "regulator": document.regulator,
                            "source_url": document.url,
                            "chunk_index": index,
                            "content_hash": content_hash,
                        },
                    }
                    for index, text in enumerate(chunks)
                ],
            )
        except CancelledRunError:
            raise
        except Exception as e:
            snippets.append(
                make_snippet(
                    f"reg_version_chunk_error_{document_id}",
                    f"Failed to store chunks for {document.url}: {e}",
                    source_url=document.url,
                    level="warning",
                )
            )
    return document_id


def pending_proposals(
    proposals: List[RuleProposal],
    documents: List[RegulatoryDocument],
) -> List[RuleProposal]:
    """Unversioned proposals whose source document is known."""
    urls = {document.url for document in documents}
    return [p for p in proposals if p.rule_version_id is None and p.document_url in urls]


async def version_rule_proposals(
    ctx: StageContext,
    proposals: List[RuleProposal],
    documents: List[RegulatoryDocument],
) -> VersionOutcome:
    """
    Persist every unversioned proposal whose document is known.

    Returns the proposals and documents that were stamped with persisted ids
    along with the new ledger entries.
    """
    if not proposals:
        return VersionOutcome(proposals=[], documents=[], versions=[])

    await ctx.channel.node_start(NODE, {"proposal_count": len(proposals)})

    store = ctx.services.store
    documents_by_url = {document.url: document for document in documents}
    persisted_proposals: List[RuleProposal] = []
    persisted_documents: Dict[str, RegulatoryDocument] = {}
    versions: List[RegulatoryVersionRecord] = []
    snippets: List[RegulatorySnippet] = []

    for proposal in proposals:
        if proposal.rule_version_id:
            continue
        document = documents_by_url.get(proposal.document_url)
        if document is None:
            continue

        content_hash = proposal.diff.content_hash or hash_content(document.content)
        document_id = document.document_id
        if not document_id:
            try:
                document_id = await _persist_document(ctx, document, content_hash, snippets)
            except CancelledRunError:
                raise
            except Exception as e:
                logger.warning("document_persist_failed", proposal_id=proposal.id, error=str(e))
                snippets.append(
                    make_snippet(
                        f"reg_version_doc_error_{proposal.id}",
                        f"Failed to upsert regulatory document for {proposal.document_url}: {e}",
                        source_url=proposal.document_url,
                        level="warning",
                    )
                )
                continue

            document = document.model_copy(update={"document_id": document_id})
            documents_by_url[document.url] = document
            persisted_documents[document.url] = document

        ctx.checkpoint()
        try:
            version_id = await store.create_rule_version(rule_version_record(proposal, document_id))
        except CancelledRunError:
            raise
        except Exception as e:
            logger.warning("rule_version_failed", proposal_id=proposal.id, error=str(e))
            snippets.append(
                make_snippet(
                    f"reg_version_error_{proposal.id}",
                    f"Failed to create rule version for {proposal.id}: {e}",
                    source_url=proposal.document_url,
                    level="warning",
                )
            )
            continue

        persisted_proposals.append(
            proposal.model_copy(
                update={"rule_version_id": version_id, "document_id": document_id, "status": "pending_approval"}
            )
        )
        versions.append(
            RegulatoryVersionRecord(
                rule_version_id=version_id,
                rule_id=proposal.id,
                document_id=document_id,
                status="pending_approval",
                regulator=proposal.regulator,
                source_url=proposal.document_url,
                effective_date=proposal.effective_date,
            )
        )
        snippets.append(
            make_snippet(
                f"reg_version_{version_id}",
                f"Persisted draft rule version {version_id} for {proposal.regulator}.",
                source_url=proposal.document_url,
                level="success",
            )
        )

    await ctx.channel.node_end(NODE, {"versions_created": len(versions)})

    return VersionOutcome(
        proposals=persisted_proposals,
        documents=list(persisted_documents.values()),
        versions=versions,
        snippets=snippets,
    )
