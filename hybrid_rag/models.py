"""Data model shared by ingestion, crawling and retrieval."""

import hashlib
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

CONTEXT_SEPARATOR = "\n\n---\n\n"


def document_id(source_path: str) -> str:
    """Stable store identity derived from a document's source path or URL."""
    return hashlib.sha256(source_path.encode("utf-8")).hexdigest()[:32]


@dataclass
class Document:
    """A unit of retrievable content written to the persistent store."""

    title: str
    content: str
    source_path: str
    embedding: list[float] = field(default_factory=list)
    site: str | None = None
    page: int | None = None

    @property
    def id(self) -> str:
        return document_id(self.source_path)

    def to_source(self) -> dict[str, Any]:
        """Serialize to the store's field names."""
        return {
            "title": self.title,
            "content": self.content,
            "embedding": self.embedding,
            "site": self.site,
            "sourcePath": self.source_path,
            "page": self.page,
        }


@dataclass(frozen=True)
class PageText:
    """Extracted text of one PDF page (0-based index)."""

    index: int
    text: str

    @property
    def number(self) -> int:
        return self.index + 1


@dataclass
class CorpusEntry:
    """One crawled page held in memory for a crawl-and-answer session."""

    url: str
    title: str
    content: str
    embedding: list[float] | None = None


@dataclass(frozen=True)
class SiteCorpus:
    """In-memory corpus plus its IDF table, built once after a crawl and then read-only."""

    entries: tuple[CorpusEntry, ...]
    idf: Mapping[str, float]

    @classmethod
    def build(cls, entries: list[CorpusEntry], idf: dict[str, float]) -> "SiteCorpus":
        return cls(entries=tuple(entries), idf=MappingProxyType(dict(idf)))

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class SearchHit:
    """A document as returned by one ranking producer."""

    id: str
    title: str
    content: str
    source_path: str | None = None
    page: int | None = None
    site: str | None = None
    highlight: str | None = None
    score: float | None = None


@dataclass(frozen=True)
class RetrievalSource:
    id: str
    title: str
    source_path: str | None
    page: int | None
    snippet: str
    score: float


@dataclass
class RetrievalResult:
    """Fused retrieval output; contexts[i] belongs to sources[i]."""

    contexts: list[str] = field(default_factory=list)
    sources: list[RetrievalSource] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.contexts
