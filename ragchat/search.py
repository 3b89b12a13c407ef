"""Web search client for the internet search tool."""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx

from .config import config
from .exceptions import UpstreamUnavailableError

logger = config.get_logger(__name__)

NO_RESULTS = "No results found."


@dataclass
class SearchResult:
    title: str
    content: str
    url: str


@dataclass
class SearchResponse:
    answer: str | None = None
    results: list[SearchResult] = field(default_factory=list)


class WebSearchClient:
    """Queries a Tavily-style search API for an answer summary and results."""

    def __init__(
        self,
        api_key: str | None = None,
        url: str | None = None,
        timeout: float | None = None,
        max_results: int | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else config.TAVILY_API_KEY
        self.url = url or config.SEARCH_API_URL
        self.max_results = max_results or config.SEARCH_MAX_RESULTS
        self.http_client = http_client or httpx.Client(
            timeout=timeout or config.SEARCH_TIMEOUT,
            headers=config.get_api_headers(),
        )

    def search(self, query: str) -> SearchResponse:
        """Run a web search.

        Returns:
            The answer summary (if any) and up to max_results results.

        Raises:
            UpstreamUnavailableError: If the search service is unreachable,
                answers with an error status or returns malformed JSON.
        """
        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": "basic",
            "include_answer": True,
            "include_images": False,
            "include_raw_content": False,
            "max_results": self.max_results,
        }
        try:
            response = self.http_client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            msg = f"Search API error: HTTP {exc.response.status_code}"
            raise UpstreamUnavailableError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"Search API unavailable: {exc}"
            raise UpstreamUnavailableError(msg) from exc
        except ValueError as exc:
            msg = "Search API returned invalid JSON"
            raise UpstreamUnavailableError(msg) from exc

        if not isinstance(data, dict):
            msg = f"Search API returned {type(data).__name__}, expected an object"
            raise UpstreamUnavailableError(msg)
        items = data.get("results") or []
        if not isinstance(items, list):
            msg = "Search API returned results that are not a list"
            raise UpstreamUnavailableError(msg)

        results = [
            SearchResult(
                title=str(item.get("title", "")),
                content=str(item.get("content", "")),
                url=str(item.get("url", "")),
            )
            for item in items
            if isinstance(item, dict)
        ][: self.max_results]
        logger.info("Web search for %r returned %d results", query, len(results))
        return SearchResponse(answer=data.get("answer") or None, results=results)

    def close(self) -> None:
        self.http_client.close()


def format_search_results(response: SearchResponse) -> str:
    """Render a search response as markdown for the model.

    Returns:
        Markdown text, or a fixed sentence when nothing was found.
    """
    formatted = ""
    if response.answer:
        formatted += f"**Answer**: {response.answer}\n\n"

    if response.results:
        formatted += "**Search Results**:\n"
        for index, result in enumerate(response.results, start=1):
            formatted += f"{index}. **{result.title}**\n"
            formatted += f"   {result.content}\n"
            formatted += f"   Source: {result.url}\n\n"

    return formatted or NO_RESULTS
