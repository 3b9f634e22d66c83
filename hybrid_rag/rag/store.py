"""Async Elasticsearch client over the REST API (aiohttp).

Only the calls the pipeline needs: index bootstrap, upsert by id, and _search.
"""

import asyncio
import logging
from typing import Any

import aiohttp
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import RAGConfig
from ..errors import StoreWriteFailure, TransientProviderError
from ..models import Document, SearchHit

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class RetryableStatus(Exception):
    """A response status worth retrying (408, 429, 5xx)."""

    def __init__(self, status: int, body: str):
        super().__init__(f"HTTP {status}")
        self.status = status
        self.body = body


def index_mapping(dims: int = 1536, analyzer: str = "norwegian") -> dict[str, Any]:
    """Settings and mappings for a new document index."""
    return {
        "settings": {"number_of_shards": 1, "number_of_replicas": 1},
        "mappings": {
            "properties": {
                "title": {"type": "keyword"},
                "site": {"type": "keyword"},
                "sourcePath": {"type": "keyword"},
                "content": {"type": "text", "analyzer": analyzer},
                "page": {"type": "integer"},
                "embedding": {"type": "dense_vector", "dims": dims, "index": True, "similarity": "cosine"},
            }
        },
    }


def parse_hits(response: dict[str, Any]) -> list[SearchHit]:
    """Convert a _search response into SearchHits, keeping the store's order."""
    hits = []
    for hit in response.get("hits", {}).get("hits", []):
        source = hit.get("_source") or {}
        highlights = (hit.get("highlight") or {}).get("content") or []
        score = hit.get("_score")
        hits.append(
            SearchHit(
                id=hit["_id"],
                title=source.get("title") or "",
                content=source.get("content") or "",
                source_path=source.get("sourcePath"),
                page=source.get("page"),
                site=source.get("site"),
                highlight=highlights[0] if highlights else None,
                score=float(score) if isinstance(score, (int, float)) else None,
            )
        )
    return hits


def _error_reason(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("reason") or error.get("type") or fallback
        if isinstance(error, str):
            return error
    return fallback


class ElasticsearchStore:
    """Thin async wrapper around the Elasticsearch REST API.

    Use as an async context manager so the HTTP session is closed:

        async with ElasticsearchStore(config) as store:
            await store.ensure_index(config.index_name)
    """

    def __init__(
        self,
        config: RAGConfig,
        session: aiohttp.ClientSession | None = None,
        retry_delay: float = 1.0,
    ):
        """Initialize the store.

        Args:
            config: Store URL, API key, timeout, retry budget, mapping settings
            session: Existing session to reuse (not closed by this object)
            retry_delay: Initial delay in seconds before retrying (doubles each retry)
        """
        self.base_url = config.es_url.rstrip("/")
        self.max_retries = config.store_max_retries
        self.retry_delay = retry_delay
        self.dims = config.embedding_dimensions
        self.analyzer = config.index_analyzer
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)
        self._headers = {"Content-Type": "application/json"}
        if config.es_api_key:
            self._headers["Authorization"] = f"ApiKey {config.es_api_key}"
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers)
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("ElasticsearchStore must be used as 'async with ElasticsearchStore(...)'")
        return self._session

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> tuple[int, Any]:
        """Send a request, retrying connection errors and retryable statuses.

        Returns:
            Tuple of (HTTP status, decoded JSON body or raw text)

        Raises:
            TransientProviderError: when retries are exhausted
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay),
            retry=retry_if_exception_type((aiohttp.ClientConnectionError, asyncio.TimeoutError, RetryableStatus)),
            before_sleep=lambda state: logger.warning(
                f"[STORE] {method} {path} failed ({self._describe(state.outcome.exception())}), "
                f"retrying in {state.next_action.sleep:.1f}s (attempt {state.attempt_number}/{self.max_retries})"
            ),
            sleep=asyncio.sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send(method, url, body)
        except RetryError as e:
            error = e.last_attempt.exception()
            logger.error(f"[STORE] {method} {path} failed after {self.max_retries + 1} attempts: {self._describe(error)}")
            raise TransientProviderError(
                f"{method} {path} failed: {self._describe(error)}",
                status=getattr(error, "status", None),
                body=getattr(error, "body", ""),
            ) from error

    @staticmethod
    def _describe(error: BaseException | None) -> str:
        return (str(error) or type(error).__name__) if error else "unknown error"

    async def _send(self, method: str, url: str, body: dict[str, Any] | None) -> tuple[int, Any]:
        async with self.session.request(method, url, json=body, headers=self._headers, timeout=self._timeout) as response:
            try:
                payload = await response.json(content_type=None)
            except ValueError:
                payload = await response.text()
            if response.status in RETRYABLE_STATUS_CODES:
                raise RetryableStatus(response.status, str(payload))
            return response.status, payload

    async def index_exists(self, index_name: str) -> bool:
        status, _ = await self._request("HEAD", index_name)
        return status == 200

    async def ensure_index(self, index_name: str) -> bool:
        """Create the index with the document mapping when missing.

        Returns:
            True if the index was created, False if it already existed
        """
        if await self.index_exists(index_name):
            logger.debug(f"[STORE] Index '{index_name}' exists")
            return False

        status, body = await self._request("PUT", index_name, index_mapping(self.dims, self.analyzer))
        if status >= 300:
            raise TransientProviderError(
                f"could not create index '{index_name}': {_error_reason(body, f'HTTP {status}')}",
                status=status,
                body=str(body),
            )
        logger.info(f"[STORE] Created index '{index_name}' ({self.dims} dims, analyzer={self.analyzer})")
        return True

    async def delete_index(self, index_name: str) -> bool:
        """Delete the index. Returns False when it did not exist."""
        status, body = await self._request("DELETE", index_name)
        if status == 404:
            return False
        if status >= 300:
            raise TransientProviderError(
                f"could not delete index '{index_name}': {_error_reason(body, f'HTTP {status}')}",
                status=status,
                body=str(body),
            )
        logger.info(f"[STORE] Deleted index '{index_name}'")
        return True

    async def upsert(self, index_name: str, document: Document) -> str:
        """Write a document under its source-path identity, replacing any previous version.

        Raises:
            StoreWriteFailure: when the store rejects the write
        """
        doc_id = document.id
        try:
            status, body = await self._request("PUT", f"{index_name}/_doc/{doc_id}", document.to_source())
        except TransientProviderError as e:
            raise StoreWriteFailure(doc_id, str(e)) from e
        if status >= 300:
            raise StoreWriteFailure(doc_id, _error_reason(body, f"HTTP {status}"))
        return doc_id

    async def search(self, index_name: str, body: dict[str, Any]) -> list[SearchHit]:
        """Run a _search request body and return its hits.

        Raises:
            TransientProviderError: on transport failure or an error response
        """
        status, payload = await self._request("POST", f"{index_name}/_search", body)
        if status >= 300:
            raise TransientProviderError(
                f"search on '{index_name}' failed: {_error_reason(payload, f'HTTP {status}')}",
                status=status,
                body=str(payload),
            )
        return parse_hits(payload if isinstance(payload, dict) else {})
