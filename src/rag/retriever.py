"""Azure Cognitive Search retrieval with degrade-to-empty semantics."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedDocument:
    content: str
    source: str
    score: float = 0.0

    @classmethod
    def from_search_hit(cls, hit: dict[str, Any]) -> RetrievedDocument:
        metadata = hit.get("metadata") if isinstance(hit.get("metadata"), dict) else {}
        content = hit.get("content") or hit.get("text") or hit.get("document") or ""
        source = metadata.get("source") or hit.get("source") or "Unknown source"
        score = hit.get("@search.score") or 0.0
        return cls(content=str(content), source=str(source), score=float(score))


@dataclass(frozen=True)
class SearchOptions:
    top: int = 5
    search_mode: str = "any"
    query_type: str = "simple"
    select: str | None = None
    filter: str | None = None


class AzureSearchRetriever:
    """Keyword/semantic search against an Azure Cognitive Search index.

    Provider failures never propagate: the caller receives an empty list and
    the failure is only logged, so an ungrounded answer can still be produced.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._endpoint = (settings.azure_search_endpoint or "").rstrip("/")
        self._api_key = settings.azure_search_api_key
        self._index = settings.azure_search_index_name
        self._api_version = settings.azure_search_api_version
        self._timeout = settings.search_timeout_seconds
        self._default_top = settings.search_top_k
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._endpoint and self._index and self._api_key)

    def default_options(self) -> SearchOptions:
        return SearchOptions(top=self._default_top)

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "api-key": self._api_key or ""}

    def _index_url(self, path: str) -> str:
        return f"{self._endpoint}/indexes/{self._index}/{path}?api-version={self._api_version}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> list[RetrievedDocument]:
        options = options or self.default_options()
        if not self.configured:
            LOGGER.warning("Azure Search is not configured; continuing without context")
            return []

        LOGGER.info(
            "Searching Azure Cognitive Search (top=%d, mode=%s): %s",
            options.top,
            options.search_mode,
            query[:100],
        )
        payload: dict[str, Any] = {
            "search": query,
            "top": options.top,
            "searchMode": options.search_mode,
            "queryType": options.query_type,
        }
        if options.select:
            payload["select"] = options.select
        if options.filter:
            payload["filter"] = options.filter

        try:
            async with self._client() as client:
                response = await client.post(
                    self._index_url("docs/search"),
                    json=payload,
                    headers=self._headers(),
                )
            response.raise_for_status()
            hits = response.json().get("value") or []
            documents = [RetrievedDocument.from_search_hit(hit) for hit in hits]
        except httpx.HTTPStatusError as exc:
            LOGGER.error(
                "Azure Search error (status=%s): %s",
                exc.response.status_code,
                exc.response.text[:500],
            )
            return []
        except (httpx.HTTPError, ValueError, TypeError, AttributeError) as exc:
            LOGGER.error("Azure Search unavailable: %s", exc)
            return []

        documents.sort(key=lambda doc: doc.score, reverse=True)
        LOGGER.info("Search completed with %d result(s)", len(documents))
        return documents

    async def check_health(self) -> dict[str, Any]:
        """Report whether the index answers and how large it is."""

        if not self.configured:
            return {"healthy": False, "error": "Azure Search is not configured."}
        try:
            async with self._client() as client:
                response = await client.get(self._index_url("stats"), headers=self._headers())
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.error("Search index validation error: %s", exc)
            return {"healthy": False, "error": str(exc)}

        return {
            "healthy": True,
            "documentCount": data.get("documentCount"),
            "storageSize": data.get("storageSize"),
        }
