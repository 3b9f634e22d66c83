"""Hybrid retrieval: crawling, fusion, the persistent store and the live-site corpus."""

from .crawler import CrawlFrontier, HttpFetcher, SiteCrawler, build_corpus
from .fusion import build_idf, cosine_similarity, keyword_score, reciprocal_rank_fusion, tokenize
from .live_site import LiveSiteQA
from .queries import LexicalSearchRequest, VectorSearchRequest
from .retrieval import HybridRetriever, corpus_retriever, store_retriever
from .store import ElasticsearchStore

__all__ = [
    "CrawlFrontier",
    "ElasticsearchStore",
    "HttpFetcher",
    "HybridRetriever",
    "LexicalSearchRequest",
    "LiveSiteQA",
    "SiteCrawler",
    "VectorSearchRequest",
    "build_corpus",
    "build_idf",
    "corpus_retriever",
    "cosine_similarity",
    "keyword_score",
    "reciprocal_rank_fusion",
    "store_retriever",
    "tokenize",
]
