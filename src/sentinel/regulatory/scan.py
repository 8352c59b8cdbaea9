"""
Regulatory scanner: discovers candidate source URLs per regulator.

Regulators with a dedicated portal integration are enumerated through the
portal's listing search first; every configured free-text query then runs
against the web search provider scoped to the regulator's domains.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse

import structlog

from ..errors import CancelledRunError, ConfigError
from ..events import now_ms
from ..models import RegulatoryCandidate, RegulatorySnippet
from .constants import (
    MAS_PORTAL_CONTENT_TYPES,
    MAS_PORTAL_TOPICS,
    MAX_PORTAL_PAGES,
    MAX_RESULTS_PER_QUERY,
    PORTAL_PAGE_SIZE,
    PORTAL_REGULATORS,
    RegulatorConfig,
)
from .context import StageContext
from .utils import dedupe_by_url, get_lookback_cursor, is_before, make_snippet, merge_by_url, new_by_key

logger = structlog.get_logger(__name__)

NODE = "regulatory_scan"


@dataclass
class ScanOutcome:
    candidates: List[RegulatoryCandidate]
    new_candidates: List[RegulatoryCandidate]
    cursor: str
    snippets: List[RegulatorySnippet] = field(default_factory=list)


def _hostname(url: str, fallback: Optional[str]) -> Optional[str]:
    try:
        return urlparse(url).hostname or fallback
    except ValueError:
        return fallback


async def crawl_portal(
    ctx: StageContext,
    config: RegulatorConfig,
    start_date: str,
) -> Tuple[List[RegulatoryCandidate], List[RegulatorySnippet]]:
    """Enumerate the portal's topic x content-type listing matrix."""
    portal = ctx.services.portal
    discovered: List[RegulatoryCandidate] = []
    snippets: List[RegulatorySnippet] = []
    seen: Set[str] = set()
    summaries: List[Dict[str, object]] = []

    for topic in MAS_PORTAL_TOPICS:
        for content_type in MAS_PORTAL_CONTENT_TYPES:
            combo_hits = 0
            for page in range(1, MAX_PORTAL_PAGES + 1):
                ctx.checkpoint()
                try:
                    cards = await portal.list_cards(topic, content_type, page, cancel=ctx.cancel)
                except CancelledRunError:
                    raise
                except Exception as e:
                    snippets.append(
                        make_snippet(
                            f"reg_scan_portal_error_{now_ms()}_{page}",
                            f"MAS portal listing fetch failed for {topic} / {content_type} (page {page}): {e}",
                            level="warning",
                        )
                    )
                    break

                if not cards:
                    break

                for card in cards:
                    if card.url in seen or is_before(card.published_at, start_date):
                        continue
                    seen.add(card.url)
                    combo_hits += 1
                    discovered.append(
                        RegulatoryCandidate(
                            url=card.url,
                            title=card.title,
                            summary=card.summary,
                            published_at=card.published_at,
                            source="mas_portal",
                            regulator=config.regulator,
                            domain="mas.gov.sg",
                            source_hash=card.source_hash,
                            listing_topic=topic,
                            listing_content_type=content_type,
                            metadata={**card.metadata, "topic": topic, "content_type": content_type},
                        )
                    )

                if len(cards) < PORTAL_PAGE_SIZE:
                    break

            if combo_hits:
                summaries.append({"topic": topic, "content_type": content_type, "hits": combo_hits})

    if discovered:
        summary_text = ", ".join(
            f"{item['hits']} {str(item['content_type']).lower()} ({str(item['topic']).replace('-', ' ')})"
            for item in summaries
        )
        snippets.append(
            make_snippet(
                f"reg_scan_mas_portal_{now_ms()}",
                f"MAS portal enumeration discovered {len(discovered)} sources: {summary_text}",
                level="success",
            )
        )
    else:
        snippets.append(
            make_snippet(
                f"reg_scan_mas_portal_{now_ms()}",
                "MAS portal enumeration returned no new sources.",
                level="info",
            )
        )

    return discovered, snippets


async def search_queries(
    ctx: StageContext,
    config: RegulatorConfig,
    start_date: str,
) -> Tuple[List[RegulatoryCandidate], List[RegulatorySnippet]]:
    """Run each configured query against the search provider."""
    discovered: List[RegulatoryCandidate] = []
    snippets: List[RegulatorySnippet] = []

    for query in config.queries:
        ctx.checkpoint()
        try:
            results = await ctx.services.search.search(
                query,
                include_domains=config.include_domains,
                topic="news",
                start_date=start_date,
                max_results=MAX_RESULTS_PER_QUERY,
                cancel=ctx.cancel,
            )
        except (ConfigError, CancelledRunError):
            # missing credentials are reported once by the orchestrator
            raise
        except Exception as e:
            logger.warning("search_query_failed", regulator=config.regulator, query=query, error=str(e))
            snippets.append(
                make_snippet(
                    f"reg_scan_error_{config.code}_{now_ms()}",
                    f'Failed search for {config.regulator} query "{query}": {e}',
                    level="warning",
                )
            )
            continue

        if results:
            await ctx.channel.tool_call(
                NODE,
                {"tool": "tavily.search", "query": query, "regulator": config.regulator, "count": len(results)},
            )

        fallback_domain = config.include_domains[0] if config.include_domains else None
        for result in results:
            discovered.append(
                RegulatoryCandidate(
                    url=result.url,
                    title=result.title,
                    summary=result.content or result.snippet,
                    published_at=result.published_date,
                    source="tavily",
                    regulator=config.regulator,
                    domain=_hostname(result.url, fallback_domain),
                    metadata={"query": query},
                )
            )

    return discovered, snippets


async def scan_regulatory_sources(
    ctx: StageContext,
    existing: List[RegulatoryCandidate],
    cursor: Optional[str],
    configs: Optional[List[RegulatorConfig]] = None,
) -> ScanOutcome:
    """
    Discover candidates for every active regulator.

    Candidates are deduplicated by URL (first discovery wins within a scan);
    "new" means the URL is not already among ``existing``. The returned
    cursor is always refreshed to now.
    """
    active = configs if configs else ctx.configs
    start_date = get_lookback_cursor(cursor)
    refreshed_cursor = datetime.now(timezone.utc).isoformat()

    if not active:
        return ScanOutcome(
            candidates=list(existing),
            new_candidates=[],
            cursor=refreshed_cursor,
            snippets=[
                make_snippet(
                    f"reg_scan_none_{now_ms()}",
                    "No regulator configurations available for the scan request.",
                    level="warning",
                )
            ],
        )

    await ctx.channel.node_start(NODE, {"start_date": start_date, "regulators": [c.regulator for c in active]})

    discovered: List[RegulatoryCandidate] = []
    snippets: List[RegulatorySnippet] = []
    for config in active:
        if config.code in PORTAL_REGULATORS and ctx.services.portal is not None:
            portal_candidates, portal_snippets = await crawl_portal(ctx, config, start_date)
            discovered.extend(portal_candidates)
            snippets.extend(portal_snippets)

        query_candidates, query_snippets = await search_queries(ctx, config, start_date)
        discovered.extend(query_candidates)
        snippets.extend(query_snippets)

    deduped = dedupe_by_url(discovered)
    new_candidates = new_by_key(existing, deduped, lambda c: c.url)
    combined = merge_by_url(existing, deduped)

    regulator_summary = (
        ", ".join(c.regulator for c in active) if len(active) <= 3 else f"{len(active)} regulators"
    )
    snippets.append(
        make_snippet(
            f"reg_scan_{now_ms()}",
            f"Discovered {len(new_candidates)} new regulatory sources across {regulator_summary}."
            if new_candidates
            else "No new regulatory sources discovered during this scan window.",
            source_url=new_candidates[0].url if new_candidates else None,
            level="success" if new_candidates else "info",
        )
    )

    await ctx.channel.node_end(
        NODE,
        {"candidates_total": len(combined), "candidates_new": len(new_candidates), "start_date": start_date},
    )
    logger.info(
        "regulatory_scan_complete",
        run_id=ctx.run_id,
        candidates_total=len(combined),
        candidates_new=len(new_candidates),
    )

    return ScanOutcome(candidates=combined, new_candidates=new_candidates, cursor=refreshed_cursor, snippets=snippets)
