"""Hybrid RAG - lexical + vector retrieval over documents and crawled web sites."""

from .backends import OpenAIChatGenerator, OpenAIEmbedder, check_embedding_health
from .config import RAGConfig
from .errors import HybridRagError
from .models import Document, RetrievalResult, RetrievalSource
from .tools import create_knowledge_search_tool

# Sub-packages are imported on demand:
# - Ingestion: from hybrid_rag.ingest import FileIndexer, SiteIndexer, ImageCaptioner
# - Retrieval: from hybrid_rag.rag import ElasticsearchStore, HybridRetriever, LiveSiteQA

__version__ = "0.1.0"
__all__ = [
    "Document",
    "HybridRagError",
    "OpenAIChatGenerator",
    "OpenAIEmbedder",
    "RAGConfig",
    "RetrievalResult",
    "RetrievalSource",
    "check_embedding_health",
    "create_knowledge_search_tool",
]
