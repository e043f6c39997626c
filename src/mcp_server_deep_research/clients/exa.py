"""Exa search and contents client built on httpx."""

import logging

import httpx

from ..exceptions import ProviderError, SearchError
from ..research.models import SourceResult
from .base import SearchContents, SearchResponse, SearchType
from .http import raise_for_provider_status, send_with_retry

logger = logging.getLogger(__name__)

EXA_BASE_URL = "https://api.exa.ai"
SERVICE = "Exa"


class ExaClient:
    """Web search with inline contents, plus full-text fetch for known URLs."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        *,
        timeout: float = 90.0,
        max_retries: int = 3,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or EXA_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = http_client or httpx.AsyncClient()

    @property
    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key, "Content-Type": "application/json"}

    async def _post(self, path: str, body: dict, query: str | None = None) -> dict:
        request = self._client.build_request("POST", f"{self.base_url}{path}", headers=self._headers, json=body)
        response = await send_with_retry(self._client, request, service=SERVICE, timeout=self.timeout, retries=self.max_retries)
        try:
            raise_for_provider_status(response, SERVICE, "EXA_API_KEY")
        except ProviderError as e:
            if type(e) is ProviderError:
                raise SearchError(str(e), query=query, status_code=e.status_code) from e
            raise
        return response.json()

    async def search(
        self,
        query: str,
        *,
        type: SearchType = "deep",
        num_results: int = 10,
        contents: SearchContents | None = None,
    ) -> SearchResponse:
        """Run a search and return results with the requested contents attached."""
        body = {
            "query": query,
            "type": type,
            "numResults": num_results,
            "contents": (contents or SearchContents()).to_payload(),
        }
        logger.debug(f"Exa search: {query!r} ({num_results} results)")
        data = await self._post("/search", body, query=query)
        return SearchResponse(
            results=[SourceResult.from_api(r) for r in data.get("results") or []],
            request_id=data.get("requestId", ""),
            resolved_search_type=data.get("resolvedSearchType", ""),
        )

    async def get_contents(self, urls: list[str]) -> list[SourceResult]:
        """Fetch full text and summary for exactly these URLs."""
        if not urls:
            return []
        data = await self._post("/contents", {"ids": urls, "text": True, "summary": True})
        return [SourceResult.from_api(r) for r in data.get("results") or []]

    async def aclose(self) -> None:
        await self._client.aclose()
