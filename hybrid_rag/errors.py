"""Exception hierarchy for ingestion, crawling and retrieval."""


class HybridRagError(Exception):
    """Base class for all hybrid-rag errors."""


class ExtractionError(HybridRagError):
    """Base class for per-file extraction failures (never fatal to a batch)."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class UnsupportedFormat(ExtractionError):
    """File extension has no extractor."""


class CorruptDocument(ExtractionError):
    """File exists but could not be parsed."""


class EmptyContent(ExtractionError):
    """File parsed but produced no text."""


class EmbeddingFailure(HybridRagError):
    """Embedding service call failed; the document cannot be indexed without a vector."""


class StoreWriteFailure(HybridRagError):
    """Search store rejected a document write."""

    def __init__(self, doc_id: str, reason: str):
        super().__init__(f"write of {doc_id} failed: {reason}")
        self.doc_id = doc_id
        self.reason = reason


class TransientProviderError(HybridRagError):
    """HTTP-level provider failure that survived the retry budget."""

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class VectorSearchUnavailable(HybridRagError):
    """Vector ranking failed; fusion continues lexical-only."""


class FrontierFetchFailure(HybridRagError):
    """A crawled URL could not be fetched; the page is skipped."""


class SitemapUnavailable(HybridRagError):
    """No usable sitemap; the crawl continues with link discovery only."""
