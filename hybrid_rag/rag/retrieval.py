"""Hybrid retrieval: one fusion path over pluggable lexical and vector rankers.

Two backends plug into the same HybridRetriever:
- Persistent index: ElasticsearchLexicalRanker + ElasticsearchVectorRanker
- Crawled site held in memory: CorpusLexicalRanker + CorpusVectorRanker
"""

import logging
from collections.abc import Sequence
from typing import Protocol

from ..backends import Embedder
from ..config import DEFAULT_BOOST_TERMS, RAGConfig
from ..errors import VectorSearchUnavailable
from ..models import RetrievalResult, RetrievalSource, SearchHit, SiteCorpus
from ..text import truncate
from .fusion import DEFAULT_RRF_K, cosine_similarity, keyword_score, reciprocal_rank_fusion
from .queries import LexicalSearchRequest, VectorSearchRequest

logger = logging.getLogger(__name__)

# Snippet length when a hit carries no highlight
STORE_SNIPPET_CHARS = 800
CORPUS_SNIPPET_CHARS = 1200

# Candidates taken from each in-memory ranking before fusion
CORPUS_RANK_DEPTH = 50


class SearchBackend(Protocol):
    async def search(self, index_name: str, body: dict) -> list[SearchHit]: ...


class LexicalRanker(Protocol):
    async def rank(self, query: str, site: str | None = None) -> list[SearchHit]: ...


class VectorRanker(Protocol):
    async def rank(self, vector: Sequence[float], site: str | None = None) -> list[SearchHit]: ...


class ElasticsearchLexicalRanker:
    """Full-text ranking from the persistent index, with highlights."""

    def __init__(
        self,
        store: SearchBackend,
        index_name: str,
        size: int = 20,
        boost_terms: Sequence[str] = DEFAULT_BOOST_TERMS,
    ):
        self.store = store
        self.index_name = index_name
        self.size = size
        self.boost_terms = tuple(boost_terms)

    async def rank(self, query: str, site: str | None = None) -> list[SearchHit]:
        request = LexicalSearchRequest(query=query, site=site, size=self.size, boost_terms=self.boost_terms)
        return await self.store.search(self.index_name, request.to_body())


class ElasticsearchVectorRanker:
    """kNN ranking from the persistent index.

    Any failure is reported as VectorSearchUnavailable so fusion can continue lexical-only.
    """

    def __init__(self, store: SearchBackend, index_name: str, k: int = 50, num_candidates: int = 1000):
        self.store = store
        self.index_name = index_name
        self.k = k
        self.num_candidates = num_candidates

    async def rank(self, vector: Sequence[float], site: str | None = None) -> list[SearchHit]:
        try:
            request = VectorSearchRequest(vector=vector, site=site, k=self.k, num_candidates=self.num_candidates)
            return await self.store.search(self.index_name, request.to_body())
        except Exception as e:
            raise VectorSearchUnavailable(f"kNN search failed: {e}") from e


def _corpus_hit(corpus: SiteCorpus, index: int, score: float) -> SearchHit:
    entry = corpus.entries[index]
    return SearchHit(id=entry.url, title=entry.title, content=entry.content, source_path=entry.url, score=score)


class CorpusLexicalRanker:
    """tf x smoothed-idf keyword ranking over an in-memory corpus.

    Documents scoring zero are left out of the ranking.
    """

    def __init__(self, corpus: SiteCorpus, depth: int = CORPUS_RANK_DEPTH):
        self.corpus = corpus
        self.depth = depth

    async def rank(self, query: str, site: str | None = None) -> list[SearchHit]:
        scored = [
            (index, keyword_score(entry.content, query, self.corpus.idf))
            for index, entry in enumerate(self.corpus.entries)
        ]
        scored = [item for item in scored if item[1] > 0]
        scored.sort(key=lambda item: item[1], reverse=True)
        return [_corpus_hit(self.corpus, index, score) for index, score in scored[: self.depth]]


class CorpusVectorRanker:
    """Cosine-similarity ranking over an in-memory corpus."""

    def __init__(self, corpus: SiteCorpus, depth: int = CORPUS_RANK_DEPTH):
        self.corpus = corpus
        self.depth = depth

    async def rank(self, vector: Sequence[float], site: str | None = None) -> list[SearchHit]:
        scored = [
            (index, cosine_similarity(vector, entry.embedding))
            for index, entry in enumerate(self.corpus.entries)
            if entry.embedding
        ]
        scored.sort(key=lambda item: item[1], reverse=True)
        return [_corpus_hit(self.corpus, index, score) for index, score in scored[: self.depth]]


class HybridRetriever:
    """Embeds the query, runs both rankers and merges them with Reciprocal Rank Fusion."""

    def __init__(
        self,
        embedder: Embedder,
        lexical: LexicalRanker,
        vector: VectorRanker,
        rrf_k: int = DEFAULT_RRF_K,
        snippet_chars: int = STORE_SNIPPET_CHARS,
    ):
        """Initialize the retriever.

        Args:
            embedder: Embeds the query for the vector ranker
            lexical: Lexical ranking producer
            vector: Vector ranking producer
            rrf_k: Reciprocal Rank Fusion constant
            snippet_chars: Content length used when a hit has no highlight
        """
        self.embedder = embedder
        self.lexical = lexical
        self.vector = vector
        self.rrf_k = rrf_k
        self.snippet_chars = snippet_chars

    async def retrieve(self, query: str, site: str | None = None, take: int = 8) -> RetrievalResult:
        """Return the top `take` fused results for query.

        Lexical failures propagate. Vector failures are logged and the result is
        fused from the lexical ranking alone.

        Args:
            query: User question
            site: Optional site tag restricting both rankings
            take: Number of results

        Returns:
            RetrievalResult with parallel contexts and sources in fused order
        """
        if not query or not query.strip():
            return RetrievalResult()

        query_vector = await self.embedder.embed(query)
        lexical_hits = await self.lexical.rank(query, site)

        try:
            vector_hits = await self.vector.rank(query_vector, site)
        except VectorSearchUnavailable as e:
            logger.warning(f"[RAG] {e}; continuing with lexical ranking only")
            vector_hits = []

        # Lexical hits go first so their highlights win
        hits: dict[str, SearchHit] = {}
        for hit in [*lexical_hits, *vector_hits]:
            hits.setdefault(hit.id, hit)

        rankings = [[h.id for h in lexical_hits]]
        if vector_hits:
            rankings.append([h.id for h in vector_hits])
        fused = reciprocal_rank_fusion(rankings, k=self.rrf_k)[:take]

        result = RetrievalResult()
        for doc_id, score in fused:
            hit = hits[doc_id]
            snippet = hit.highlight if hit.highlight and hit.highlight.strip() else truncate(hit.content, self.snippet_chars)
            result.contexts.append(snippet)
            result.sources.append(
                RetrievalSource(
                    id=doc_id,
                    title=hit.title,
                    source_path=hit.source_path,
                    page=hit.page,
                    snippet=snippet,
                    score=score,
                )
            )

        logger.debug(
            f"[RAG] '{query[:60]}': {len(lexical_hits)} lexical, {len(vector_hits)} vector, {len(result.contexts)} fused"
        )
        return result


def store_retriever(store: SearchBackend, embedder: Embedder, config: RAGConfig) -> HybridRetriever:
    """HybridRetriever over the persistent index described by config."""
    return HybridRetriever(
        embedder,
        ElasticsearchLexicalRanker(store, config.index_name, size=config.lexical_size, boost_terms=config.boost_terms),
        ElasticsearchVectorRanker(store, config.index_name, k=config.knn_k, num_candidates=config.knn_num_candidates),
        rrf_k=config.rrf_k,
        snippet_chars=STORE_SNIPPET_CHARS,
    )


def corpus_retriever(corpus: SiteCorpus, embedder: Embedder, rrf_k: int = DEFAULT_RRF_K) -> HybridRetriever:
    """HybridRetriever over an in-memory crawled corpus."""
    return HybridRetriever(
        embedder,
        CorpusLexicalRanker(corpus),
        CorpusVectorRanker(corpus),
        rrf_k=rrf_k,
        snippet_chars=CORPUS_SNIPPET_CHARS,
    )
