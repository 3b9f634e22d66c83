"""Tests for the Elasticsearch REST client (HTTP session replaced by a fake)."""

import aiohttp
import pytest

from hybrid_rag.config import RAGConfig
from hybrid_rag.errors import StoreWriteFailure, TransientProviderError
from hybrid_rag.models import Document
from hybrid_rag.rag.store import ElasticsearchStore, index_mapping, parse_hits


class FakeResponse:
    def __init__(self, status, payload=None):
        self.status = status
        self.payload = payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):
        return self.payload

    async def text(self):
        return str(self.payload)


class FakeSession:
    """Returns queued responses (or raises queued exceptions) and records requests."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.requests.append((method, url, json))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_store(outcomes, retry_delay=0, **overrides):
    config = RAGConfig(show_progress=False, es_url="http://es:9200/", **overrides)
    session = FakeSession(outcomes)
    return ElasticsearchStore(config, session=session, retry_delay=retry_delay), session


@pytest.mark.unit
class TestMappingAndParsing:
    def test_index_mapping(self):
        properties = index_mapping(1536, "norwegian")["mappings"]["properties"]

        assert properties["embedding"] == {"type": "dense_vector", "dims": 1536, "index": True, "similarity": "cosine"}
        assert properties["content"] == {"type": "text", "analyzer": "norwegian"}
        assert properties["sourcePath"]["type"] == "keyword"
        assert properties["page"]["type"] == "integer"

    def test_parse_hits(self):
        response = {
            "hits": {
                "hits": [
                    {
                        "_id": "abc",
                        "_score": 3.5,
                        "_source": {"title": "Guide", "content": "Tekst", "sourcePath": "/docs/guide.pdf", "page": 2},
                        "highlight": {"content": ["<em>Tekst</em>"]},
                    },
                    {"_id": "def", "_score": None, "_source": {"title": "Other"}},
                ]
            }
        }
        hits = parse_hits(response)

        assert hits[0].id == "abc"
        assert hits[0].highlight == "<em>Tekst</em>"
        assert hits[0].page == 2
        assert hits[0].score == 3.5
        assert hits[1].content == ""
        assert hits[1].highlight is None
        assert hits[1].score is None


@pytest.mark.unit
class TestElasticsearchStore:
    @pytest.mark.asyncio
    async def test_upsert_puts_document_by_id(self):
        store, session = make_store([FakeResponse(201, {"result": "created"})])
        document = Document(title="Guide", content="Tekst", source_path="/docs/guide.pdf", embedding=[0.1])

        doc_id = await store.upsert("docs", document)

        method, url, body = session.requests[0]
        assert method == "PUT"
        assert url == f"http://es:9200/docs/_doc/{doc_id}"
        assert body["sourcePath"] == "/docs/guide.pdf"
        assert doc_id == document.id

    @pytest.mark.asyncio
    async def test_upsert_rejection_carries_reason(self):
        store, _ = make_store(
            [FakeResponse(400, {"error": {"type": "mapper_parsing_exception", "reason": "dims mismatch"}})]
        )

        with pytest.raises(StoreWriteFailure) as excinfo:
            await store.upsert("docs", Document(title="t", content="c", source_path="p"))
        assert excinfo.value.reason == "dims mismatch"

    @pytest.mark.asyncio
    async def test_retries_transient_status_then_succeeds(self):
        store, session = make_store([FakeResponse(503, "busy"), FakeResponse(200, {"hits": {"hits": []}})])

        assert await store.search("docs", {"size": 1}) == []
        assert len(session.requests) == 2

    @pytest.mark.asyncio
    async def test_connection_errors_exhaust_retries(self):
        error = aiohttp.ClientConnectionError("refused")
        store, session = make_store([error, error, error], store_max_retries=2)

        with pytest.raises(TransientProviderError):
            await store.search("docs", {"size": 1})
        assert len(session.requests) == 3

    @pytest.mark.asyncio
    async def test_retry_delay_doubles(self, monkeypatch):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr("hybrid_rag.rag.store.asyncio.sleep", fake_sleep)
        store, session = make_store(
            [FakeResponse(503, "busy"), FakeResponse(429, "slow down"), FakeResponse(503, "busy")],
            retry_delay=1.0,
            store_max_retries=2,
        )

        with pytest.raises(TransientProviderError) as excinfo:
            await store.search("docs", {"size": 1})
        assert delays == [1.0, 2.0]
        assert excinfo.value.status == 503
        assert excinfo.value.body == "busy"
        assert len(session.requests) == 3

    @pytest.mark.asyncio
    async def test_search_error_response(self):
        store, _ = make_store([FakeResponse(400, {"error": {"reason": "parsing_exception"}})])

        with pytest.raises(TransientProviderError) as excinfo:
            await store.search("docs", {"bad": True})
        assert excinfo.value.status == 400

    @pytest.mark.asyncio
    async def test_ensure_index_creates_when_missing(self):
        store, session = make_store([FakeResponse(404), FakeResponse(200, {"acknowledged": True})])

        assert await store.ensure_index("docs") is True
        assert session.requests[0][0] == "HEAD"
        method, url, body = session.requests[1]
        assert (method, url) == ("PUT", "http://es:9200/docs")
        assert body["mappings"]["properties"]["embedding"]["dims"] == 1536

    @pytest.mark.asyncio
    async def test_ensure_index_existing(self):
        store, session = make_store([FakeResponse(200)])

        assert await store.ensure_index("docs") is False
        assert len(session.requests) == 1

    @pytest.mark.asyncio
    async def test_delete_missing_index(self):
        store, _ = make_store([FakeResponse(404, {"error": {"reason": "no such index"}})])
        assert await store.delete_index("docs") is False

    @pytest.mark.asyncio
    async def test_requires_session(self):
        store = ElasticsearchStore(RAGConfig(show_progress=False))
        with pytest.raises(RuntimeError):
            await store.search("docs", {})
