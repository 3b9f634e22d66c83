"""Shared pytest fixtures and in-memory fakes for Hybrid RAG tests."""

import fitz  # PyMuPDF
import pytest

from hybrid_rag.config import RAGConfig
from hybrid_rag.errors import EmbeddingFailure, FrontierFetchFailure, StoreWriteFailure
from hybrid_rag.models import Document, SearchHit
from hybrid_rag.rag.crawler import FetchedPage
from hybrid_rag.rag.fusion import cosine_similarity, tokenize


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without network or external services")


def make_pdf(path, page_texts):
    """Write a PDF with one page per entry of page_texts (empty string = blank page)."""
    doc = fitz.open()
    for text in page_texts:
        page = doc.new_page()
        if text:
            page.insert_textbox(fitz.Rect(36, 36, 560, 800), text, fontsize=9)
    doc.save(str(path))
    doc.close()
    return path


def pdf_bytes(page_texts):
    doc = fitz.open()
    for text in page_texts:
        page = doc.new_page()
        if text:
            page.insert_textbox(fitz.Rect(36, 36, 560, 800), text, fontsize=9)
    data = doc.tobytes()
    doc.close()
    return data


class FakeEmbedder:
    """Deterministic embedder: looks up vectors by keyword, else a constant vector."""

    def __init__(self, vectors=None, default=None, fail_on=()):
        self.vectors = vectors or {}
        self.default = default or [1.0, 0.0, 0.0]
        self.fail_on = tuple(fail_on)
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingFailure(f"embedding refused for {text[:20]!r}")
        for keyword, vector in self.vectors.items():
            if keyword in text:
                return list(vector)
        return list(self.default)


class FakeStore:
    """In-memory stand-in for ElasticsearchStore: upsert by id, lexical and kNN search with site filter."""

    def __init__(self, fail_paths=(), knn_error=None):
        self.docs = {}
        self.fail_paths = set(fail_paths)
        self.knn_error = knn_error
        self.bodies = []

    async def upsert(self, index_name, document: Document):
        if document.source_path in self.fail_paths:
            raise StoreWriteFailure(document.id, "mapper_parsing_exception")
        self.docs[document.id] = document
        return document.id

    def _matches_site(self, document, filters):
        for clause in filters or []:
            site = clause.get("term", {}).get("site")
            if site is not None and document.site != site:
                return False
        return True

    def _hit(self, doc_id, document, score, highlight=None):
        return SearchHit(
            id=doc_id,
            title=document.title,
            content=document.content,
            source_path=document.source_path,
            page=document.page,
            site=document.site,
            highlight=highlight,
            score=score,
        )

    async def search(self, index_name, body):
        self.bodies.append(body)
        if "knn" in body:
            if self.knn_error:
                raise self.knn_error
            knn = body["knn"]
            scored = [
                (cosine_similarity(knn["query_vector"], d.embedding), doc_id, d)
                for doc_id, d in self.docs.items()
                if self._matches_site(d, knn.get("filter"))
            ]
            scored.sort(key=lambda item: item[0], reverse=True)
            return [self._hit(doc_id, d, score) for score, doc_id, d in scored[: knn["k"]]]

        bool_query = body["query"]["bool"]
        terms = tokenize(bool_query["must"]["match"]["content"]["query"])
        hits = []
        for doc_id, d in self.docs.items():
            if not self._matches_site(d, bool_query.get("filter")):
                continue
            content_tokens = tokenize(d.content)
            if all(t in content_tokens for t in terms):
                score = float(sum(content_tokens.count(t) for t in terms))
                hits.append(self._hit(doc_id, d, score, highlight=f"<em>{terms[0]}</em> in {d.title}"))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[: body["size"]]


class FakeFetcher:
    """Serves canned pages: url -> (content_type, body). Unknown URLs fail like a 404."""

    def __init__(self, pages=None, redirects=None, binaries=None):
        self.pages = pages or {}
        self.redirects = redirects or {}
        self.binaries = binaries or {}
        self.fetched = []

    async def get_page(self, url):
        self.fetched.append(url)
        if url not in self.pages:
            raise FrontierFetchFailure(f"{url}: HTTP 404")
        content_type, body = self.pages[url]
        return FetchedPage(
            url=url,
            final_url=self.redirects.get(url, url),
            status=200,
            content_type=content_type,
            text=body if "html" in content_type else "",
        )

    async def get_text(self, url):
        if url not in self.pages:
            raise FrontierFetchFailure(f"{url}: HTTP 404")
        return self.pages[url][1]

    async def get_bytes(self, url):
        if url not in self.binaries:
            raise FrontierFetchFailure(f"{url}: HTTP 404")
        return self.binaries[url]


class FakeCaptioner:
    """Records describe() calls and returns numbered captions."""

    def __init__(self, captions=None):
        self.captions = list(captions or [])
        self.calls = []

    async def describe(self, image_bytes, api_key=None, site=None, task_hint=None):
        self.calls.append({"image": image_bytes, "api_key": api_key, "site": site, "task_hint": task_hint})
        if self.captions:
            return self.captions.pop(0)
        return f"caption {len(self.calls)}"


class FakeGenerator:
    def __init__(self, reply="Svar fra kilden."):
        self.reply = reply
        self.prompts = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        return self.reply


@pytest.fixture
def config():
    """RAGConfig with progress bars off and captioning disabled."""
    return RAGConfig(show_progress=False)


@pytest.fixture
def caption_config():
    """RAGConfig with page captioning enabled in auto mode."""
    return RAGConfig(
        show_progress=False,
        image_captions=True,
        render_pages=True,
        caption_mode="auto",
        openai_api_key="sk-test",
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def store():
    return FakeStore()
