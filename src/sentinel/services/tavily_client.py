"""
Tavily web search and URL extraction client.

Both endpoints are plain JSON POSTs authenticated with a bearer key.
"""

from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog

from ..cancellation import CancellationToken
from ..config import Settings, get_settings
from ..errors import NetworkError, SearchConfigError
from ..interfaces import ExtractResult, SearchResult

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.tavily.com"


class TavilyClient:
    """Async Tavily client. Single-attempt requests."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.api_key = api_key or settings.TAVILY_API_KEY
        self.base_url = (base_url or settings.TAVILY_API_URL or DEFAULT_BASE_URL).strip().rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        endpoint: str,
        body: Dict[str, Any],
        cancel: Optional[CancellationToken],
    ) -> Dict[str, Any]:
        if not self.api_key:
            raise SearchConfigError("TAVILY_API_KEY is not configured")
        if cancel is not None:
            cancel.raise_if_cancelled()

        url = f"{self.base_url}/{endpoint}"
        try:
            response = await self._http.post(
                url,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"Tavily request failed: {e}", url=url) from e

        if response.status_code >= 400:
            raise NetworkError(
                f"Tavily request failed ({response.status_code}): {response.text[:300]}",
                status_code=response.status_code,
                url=url,
            )
        return response.json()

    async def search(
        self,
        query: str,
        *,
        include_domains: Optional[Sequence[str]] = None,
        exclude_domains: Optional[Sequence[str]] = None,
        topic: str = "news",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        max_results: int = 8,
        search_depth: str = "advanced",
        filter_duplicates: Optional[bool] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[SearchResult]:
        body: Dict[str, Any] = {
            "query": query,
            "include_domains": list(include_domains) if include_domains else None,
            "exclude_domains": list(exclude_domains) if exclude_domains else None,
            "start_date": start_date,
            "end_date": end_date,
            "topic": topic,
            "search_depth": search_depth,
            "max_results": max_results,
            "include_answer": False,
            "include_images": False,
            "filter_duplicates": filter_duplicates,
        }
        payload = await self._request(
            "search",
            {key: value for key, value in body.items() if value is not None},
            cancel,
        )

        results = []
        for item in payload.get("results") or []:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            results.append(
                SearchResult(
                    url=item["url"],
                    title=item.get("title"),
                    content=item.get("content"),
                    snippet=item.get("snippet"),
                    published_date=item.get("published_date"),
                    score=item.get("score"),
                )
            )
        logger.debug("tavily_search_complete", query=query, count=len(results))
        return results

    async def extract(
        self,
        urls: Sequence[str],
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> List[ExtractResult]:
        if not urls:
            return []
        payload = await self._request("extract", {"urls": list(urls)}, cancel)

        results = []
        for item in payload.get("results") or []:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            results.append(
                ExtractResult(
                    url=item["url"],
                    content=item.get("content") or item.get("raw_content") or "",
                    title=item.get("title"),
                    language=item.get("language"),
                )
            )
        logger.debug("tavily_extract_complete", requested=len(urls), returned=len(results))
        return results
