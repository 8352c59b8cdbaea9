"""
Document extractor: turns freshly discovered candidates into plaintext documents.

Portal candidates get their detail page fetched first so embedded PDFs can be
parsed directly; everything else goes through one batched call to the URL
extraction provider. URLs the provider returns nothing for are fetched
directly, and every extracted document is recorded in the regulatory source
ledger.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import structlog

from ..errors import CancelledRunError, ConfigError
from ..events import now_ms
from ..interfaces import PortalDetail
from ..metrics import regulatory_documents_total
from ..models import RegulatoryCandidate, RegulatoryDocument, RegulatorySnippet, utc_now_iso
from .constants import MAX_EXTRACT_URLS
from .context import StageContext
from .utils import detect_content_type, hash_content, make_snippet, merge_by_url, to_date_only, url_domain

logger = structlog.get_logger(__name__)

NODE = "regulatory_extract"
MAX_FALLBACK_URLS = 8
MIN_FALLBACK_PDF_CHARS = 200
MIN_FALLBACK_HTML_CHARS = 300
MAX_FALLBACK_HTML_CHARS = 200_000
SOURCE_DESCRIPTION_CHARS = 300

_SOURCE_PRIORITY = {"mas_portal_pdf": 0, "mas_portal": 1}


@dataclass
class ExtractOutcome:
    documents: List[RegulatoryDocument]
    new_documents: List[RegulatoryDocument]
    candidates: List[RegulatoryCandidate]
    snippets: List[RegulatorySnippet] = field(default_factory=list)


def _tags(regulator: Optional[str]) -> List[str]:
    return ["regulatory", regulator.lower()] if regulator else ["regulatory"]


def _candidate_meta(candidate: Optional[RegulatoryCandidate]) -> Dict[str, object]:
    if candidate is None:
        return {"source": "tavily"}
    return {
        "query": candidate.metadata.get("query"),
        "summary": candidate.summary,
        "source": candidate.source,
        "listing_topic": candidate.listing_topic,
        "listing_content_type": candidate.listing_content_type,
        "portal": candidate.metadata,
        "source_hash": candidate.source_hash,
    }


def changed_documents(
    existing: List[RegulatoryDocument],
    extracted: List[RegulatoryDocument],
) -> List[RegulatoryDocument]:
    """Extracted documents whose URL is unknown or whose text differs from the stored copy."""
    known = {document.url: hash_content(document.content) for document in existing}
    return [
        document
        for document in extracted
        if document.url not in known or known[document.url] != hash_content(document.content)
    ]


def _is_pdf_document(document: RegulatoryDocument) -> bool:
    return (
        document.content_type == "pdf"
        or ".pdf" in document.url.lower()
        or document.meta.get("source") == "mas_portal_pdf"
    )


def source_record(document: RegulatoryDocument) -> Dict[str, Any]:
    """Regulatory source ledger row for an extracted document, keyed by ``policy_url``."""
    return {
        "regulator_name": document.regulator or "Unknown",
        "title": document.title or document.url,
        "description": document.meta.get("summary") or document.content[:SOURCE_DESCRIPTION_CHARS],
        "policy_url": document.url,
        "regulatory_document_file": document.meta.get("pdf_url") or (document.url if _is_pdf_document(document) else None),
        "domain": url_domain(document.url),
        "published_date": to_date_only(document.published_at),
        "last_updated_date": utc_now_iso(),
    }


async def _fetch_detail(
    ctx: StageContext,
    semaphore: asyncio.Semaphore,
    candidate: RegulatoryCandidate,
) -> Tuple[RegulatoryCandidate, Optional[PortalDetail], Optional[str]]:
    async with semaphore:
        try:
            detail = await ctx.services.portal.fetch_detail(candidate.url, cancel=ctx.cancel)
            return candidate, detail, None
        except CancelledRunError:
            raise
        except Exception as e:
            return candidate, None, str(e)


async def extract_regulatory_documents(
    ctx: StageContext,
    fresh: List[RegulatoryCandidate],
    existing_documents: List[RegulatoryDocument],
    existing_candidates: Optional[List[RegulatoryCandidate]] = None,
) -> ExtractOutcome:
    """
    Fetch full text for new candidates.

    Returns the merged document set, the documents that are new or changed,
    and the candidate set enriched with detail-page metadata and the PDF
    candidates found on portal pages.
    """
    existing_candidates = list(existing_candidates or [])
    if not fresh:
        return ExtractOutcome(documents=list(existing_documents), new_documents=[], candidates=existing_candidates)

    await ctx.channel.node_start(NODE, {"url_count": len(fresh)})

    snippets: List[RegulatorySnippet] = []
    extracted: List[RegulatoryDocument] = []
    enriched: Dict[str, RegulatoryCandidate] = {candidate.url: candidate for candidate in fresh}
    pdf_candidates: List[RegulatoryCandidate] = []
    processed_pdfs: Set[str] = set()

    # Portal detail pages fan out; PDFs are then fetched one at a time.
    portal_candidates = [c for c in fresh if c.source == "mas_portal"]
    details: List[Tuple[RegulatoryCandidate, Optional[PortalDetail], Optional[str]]] = []
    if portal_candidates and ctx.services.portal is not None:
        ctx.checkpoint()
        semaphore = asyncio.Semaphore(ctx.services.portal_concurrency)
        details = await asyncio.gather(
            *(_fetch_detail(ctx, semaphore, candidate) for candidate in portal_candidates)
        )

    manual_count = 0
    last_manual_url: Optional[str] = None
    for candidate, detail, error in details:
        if detail is None:
            snippets.append(
                make_snippet(
                    f"reg_extract_portal_error_{now_ms()}",
                    f"Failed to fetch MAS portal detail for {candidate.url}: {error}",
                    source_url=candidate.url,
                    level="warning",
                )
            )
            continue

        candidate = candidate.model_copy(
            update={
                "title": candidate.title or detail.title,
                "published_at": candidate.published_at or detail.published_at,
                "pdf_links": list(detail.pdf_links),
            }
        )
        enriched[candidate.url] = candidate

        for pdf_url in detail.pdf_links:
            normalized = pdf_url.split("#")[0]
            if not normalized or normalized in processed_pdfs:
                continue
            processed_pdfs.add(normalized)

            pdf_candidate = candidate.model_copy(
                update={
                    "url": normalized,
                    "source": "mas_portal_pdf",
                    "parent_url": candidate.url,
                    "pdf_links": [],
                    "metadata": {**candidate.metadata, "pdf_source_url": candidate.url},
                }
            )
            pdf_candidates.append(pdf_candidate)

            ctx.checkpoint()
            try:
                text = (await ctx.services.fetcher.fetch_pdf_text(normalized, cancel=ctx.cancel)).strip()
            except CancelledRunError:
                raise
            except Exception as e:
                processed_pdfs.discard(normalized)
                snippets.append(
                    make_snippet(
                        f"reg_extract_pdf_error_{now_ms()}",
                        f"Failed to parse MAS PDF {normalized}: {e}",
                        source_url=normalized,
                        level="warning",
                    )
                )
                continue

            if not text:
                continue

            extracted.append(
                RegulatoryDocument(
                    url=normalized,
                    regulator=candidate.regulator,
                    title=detail.title or candidate.title or normalized,
                    content=text,
                    content_type="pdf",
                    published_at=candidate.published_at or detail.published_at,
                    tags=_tags(candidate.regulator),
                    meta={
                        **_candidate_meta(candidate),
                        "source": "mas_portal_pdf",
                        "pdf_source_url": candidate.url,
                    },
                )
            )
            manual_count += 1
            last_manual_url = normalized

    if manual_count:
        snippets.append(
            make_snippet(
                f"reg_extract_manual_{now_ms()}",
                f"Parsed {manual_count} MAS portal PDF document{'' if manual_count == 1 else 's'}.",
                source_url=last_manual_url,
                level="success",
            )
        )

    # Anything not already resolved as a PDF goes to the extraction provider.
    remaining = [
        candidate
        for candidate in list(enriched.values()) + pdf_candidates
        if not (candidate.source == "mas_portal_pdf" and candidate.url in processed_pdfs)
    ]
    remaining.sort(key=lambda candidate: _SOURCE_PRIORITY.get(candidate.source, 2))
    by_url = {candidate.url: candidate for candidate in remaining}
    urls = [candidate.url for candidate in remaining][:MAX_EXTRACT_URLS]

    if urls:
        ctx.checkpoint()
        try:
            results = await ctx.services.search.extract(urls, cancel=ctx.cancel)
        except (ConfigError, CancelledRunError):
            raise
        except Exception as e:
            logger.warning("batch_extract_failed", run_id=ctx.run_id, url_count=len(urls), error=str(e))
            snippets.append(
                make_snippet(
                    f"reg_extract_batch_error_{now_ms()}",
                    f"Batch extraction failed for {len(urls)} URLs: {e}",
                    level="warning",
                )
            )
            results = []

        for result in results:
            content = (result.content or "").strip()
            if not content:
                continue
            candidate = by_url.get(result.url)
            regulator = candidate.regulator if candidate else "unknown"
            extracted.append(
                RegulatoryDocument(
                    url=result.url,
                    regulator=regulator,
                    title=result.title or (candidate.title if candidate else None),
                    content=content,
                    content_type=detect_content_type(result.url),
                    published_at=candidate.published_at if candidate else None,
                    tags=_tags(candidate.regulator if candidate else None),
                    meta={**_candidate_meta(candidate), "language": result.language},
                )
            )

        snippets.extend(await _direct_fetch_fallback(ctx, urls, extracted, by_url))

    documents = merge_by_url(existing_documents, extracted)
    new_documents = changed_documents(existing_documents, extracted)
    candidates = merge_by_url(existing_candidates, list(enriched.values()) + pdf_candidates)

    for document in new_documents:
        regulatory_documents_total.labels(content_type=document.content_type).inc()

    snippets.append(
        make_snippet(
            f"reg_extract_{now_ms()}",
            f"Extracted plaintext from {len(extracted)} regulatory documents."
            if extracted
            else "No regulatory documents could be extracted for the new sources.",
            source_url=extracted[0].url if extracted else None,
            level="success" if extracted else "warning",
        )
    )
    snippets.extend(await _persist_sources(ctx, extracted))

    await ctx.channel.node_end(
        NODE,
        {"documents_total": len(documents), "documents_new": len(new_documents), "attempted": len(urls) + len(processed_pdfs)},
    )
    logger.info(
        "regulatory_extract_complete",
        run_id=ctx.run_id,
        documents_total=len(documents),
        documents_new=len(new_documents),
    )

    return ExtractOutcome(documents=documents, new_documents=new_documents, candidates=candidates, snippets=snippets)


async def _fetch_pdf_document(
    ctx: StageContext,
    url: str,
    candidate: Optional[RegulatoryCandidate],
) -> Optional[RegulatoryDocument]:
    text = (await ctx.services.fetcher.fetch_pdf_text(url, cancel=ctx.cancel)).strip()
    if len(text) < MIN_FALLBACK_PDF_CHARS:
        return None
    return RegulatoryDocument(
        url=url,
        regulator=candidate.regulator if candidate else "unknown",
        title=(candidate.title if candidate else None) or url,
        content=text,
        content_type="pdf",
        published_at=candidate.published_at if candidate else None,
        tags=_tags(candidate.regulator if candidate else None),
        meta={**_candidate_meta(candidate), "source": "direct_pdf"},
    )


async def _fetch_html_document(
    ctx: StageContext,
    url: str,
    candidate: Optional[RegulatoryCandidate],
) -> Optional[RegulatoryDocument]:
    page = await ctx.services.fetcher.fetch_html_page(url, cancel=ctx.cancel)
    if len(page.text) < MIN_FALLBACK_HTML_CHARS:
        return None
    return RegulatoryDocument(
        url=url,
        regulator=candidate.regulator if candidate else "unknown",
        title=(candidate.title if candidate else None) or page.title or url,
        content=page.text[:MAX_FALLBACK_HTML_CHARS],
        content_type="html",
        published_at=candidate.published_at if candidate else None,
        tags=_tags(candidate.regulator if candidate else None),
        meta={**_candidate_meta(candidate), "source": "html_fetch", "pdf_url": page.pdf_url},
    )


async def _direct_fetch_fallback(
    ctx: StageContext,
    urls: List[str],
    extracted: List[RegulatoryDocument],
    by_url: Dict[str, RegulatoryCandidate],
) -> List[RegulatorySnippet]:
    """Fetch URLs the extraction provider returned nothing for, as PDFs or as web pages."""
    produced = {document.url for document in extracted}
    targets = [url for url in urls if url not in produced][:MAX_FALLBACK_URLS]

    snippets: List[RegulatorySnippet] = []
    recovered = 0
    for url in targets:
        ctx.checkpoint()
        try:
            if detect_content_type(url) == "pdf":
                document = await _fetch_pdf_document(ctx, url, by_url.get(url))
            else:
                document = await _fetch_html_document(ctx, url, by_url.get(url))
        except CancelledRunError:
            raise
        except Exception as e:
            snippets.append(
                make_snippet(
                    f"reg_extract_fallback_error_{now_ms()}",
                    f"Fallback extract failed for {url}: {e}",
                    source_url=url,
                    level="warning",
                )
            )
            continue

        if document is None:
            continue
        extracted.append(document)
        recovered += 1

    if recovered:
        snippets.append(
            make_snippet(
                f"reg_extract_fallback_{now_ms()}",
                f"Fallback extractor captured {recovered} document{'' if recovered == 1 else 's'}.",
                level="success",
            )
        )
    return snippets


async def _persist_sources(ctx: StageContext, documents: List[RegulatoryDocument]) -> List[RegulatorySnippet]:
    """Upsert extracted documents into the regulatory source ledger; a failed write only logs."""
    persisted = 0
    for document in documents:
        ctx.checkpoint()
        try:
            await ctx.services.store.upsert_regulatory_source(source_record(document))
        except CancelledRunError:
            raise
        except Exception as e:
            logger.warning("regulatory_source_upsert_failed", run_id=ctx.run_id, url=document.url, error=str(e))
            continue
        persisted += 1

    if not persisted:
        return []
    return [
        make_snippet(
            f"reg_extract_sources_{now_ms()}",
            f"Persisted {persisted} regulatory source{'' if persisted == 1 else 's'} to the database.",
            level="success",
        )
    ]
