# codeforge/search_tool.py
"""
Web search over the DuckDuckGo Instant Answer API.

Results are shaped for both consumers, the model (as a tool) and /api/search:

  {"success": true, "query": q, "results": [{title, snippet, url, source}], "timestamp": iso}

Failures never raise: HTTP errors, bad JSON and empty answers come back as
`success: false` payloads with an `error` or `message`.
"""
from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, List, Optional

import httpx

from .providers import ToolSpec

log = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.duckduckgo.com/"
USER_AGENT = "Mozilla/5.0 (compatible; codeforge/0.1)"
NO_ANSWER_MESSAGE = (
    "No instant answers available. For comprehensive search, consider using a "
    "dedicated search API with authentication."
)

TOOL_NAME = "duckduckgo_search"
TOOL_DESCRIPTION = (
    "Search the web using DuckDuckGo for real-time information, current events, "
    "documentation, or any query requiring up-to-date data"
)
TOOL_PARAMETERS: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "The search query to find relevant information"},
        "maxResults": {
            "type": "integer",
            "description": "Maximum number of results to return (default: 5)",
            "default": 5,
        },
    },
    "required": ["query"],
}


def _utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


def parse_instant_answer(data: Dict[str, Any], max_results: int) -> List[Dict[str, str]]:
    results: List[Dict[str, str]] = []
    if data.get("Abstract"):
        results.append(
            {
                "title": data.get("Heading") or "Overview",
                "snippet": data["Abstract"],
                "url": data.get("AbstractURL") or "",
                "source": data.get("AbstractSource") or "DuckDuckGo",
            }
        )
    topics = data.get("RelatedTopics")
    if isinstance(topics, list):
        for topic in topics:
            if len(results) >= max_results:
                break
            if not isinstance(topic, dict):
                continue
            text, url = topic.get("Text"), topic.get("FirstURL")
            if text and url:
                results.append(
                    {
                        "title": text.split(" - ")[0] or text,
                        "snippet": text,
                        "url": url,
                        "source": "DuckDuckGo",
                    }
                )
    return results[:max_results]


class WebSearch:
    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 10.0,
        max_results: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = float(timeout)
        self.max_results = int(max_results)
        self._transport = transport

    @classmethod
    def from_config(cls, search_cfg: Dict[str, Any]) -> "WebSearch":
        return cls(
            endpoint=str(search_cfg.get("endpoint") or DEFAULT_ENDPOINT),
            timeout=float(search_cfg.get("timeout_sec", 10.0)),
            max_results=int(search_cfg.get("max_results", 5)),
        )

    async def search(self, query: str, max_results: Optional[int] = None) -> Dict[str, Any]:
        limit = int(max_results or self.max_results)
        params = {"q": query, "format": "json", "no_html": "1", "skip_disambig": "1"}
        log.info("web search: %s", query, extra={"action": "search"})
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
                transport=self._transport,
            ) as client:
                resp = await client.get(self.endpoint, params=params)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            log.warning("search failed: %s", e)
            return {"success": False, "query": query, "error": f"DuckDuckGo API error: {e.response.status_code}", "results": []}
        except (httpx.HTTPError, ValueError) as e:
            log.warning("search failed: %s", e)
            return {"success": False, "query": query, "error": str(e) or e.__class__.__name__, "results": []}

        results = parse_instant_answer(data if isinstance(data, dict) else {}, limit)
        if not results:
            return {"success": False, "query": query, "results": [], "message": NO_ANSWER_MESSAGE}
        return {"success": True, "query": query, "results": results, "timestamp": _utc_now()}

    def as_tool(self) -> ToolSpec:
        async def _handler(query: str = "", maxResults: int = 5, **_: Any) -> Dict[str, Any]:
            if not str(query).strip():
                return {"success": False, "query": query, "error": "query is required", "results": []}
            return await self.search(str(query), maxResults)

        return ToolSpec(TOOL_NAME, TOOL_DESCRIPTION, TOOL_PARAMETERS, _handler)


__all__ = ["WebSearch", "parse_instant_answer", "TOOL_NAME"]
