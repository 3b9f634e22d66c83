"""Search request builders for the Elasticsearch query DSL.

Each request type is validated at construction and serialized with to_body(),
so callers never assemble raw query dictionaries.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..config import DEFAULT_BOOST_TERMS

SOURCE_FIELDS = ("title", "content", "sourcePath", "page", "site")
BOOST_FIELDS = ("title^3", "content", "sourcePath^2")


def site_filter(site: str | None) -> list[dict[str, Any]]:
    """Term filter restricting results to one site tag (empty when site is blank)."""
    if site is None or not site.strip():
        return []
    return [{"term": {"site": site}}]


@dataclass(frozen=True)
class LexicalSearchRequest:
    """Full-text query: all query terms must match content, boost terms lift manuals.

    Attributes:
        query: User question
        site: Optional site tag filter
        size: Number of hits
        boost_terms: Words matched against title/content/sourcePath as optional should clauses
        fragment_size: Highlight fragment length in characters
    """

    query: str
    site: str | None = None
    size: int = 20
    boost_terms: Sequence[str] = DEFAULT_BOOST_TERMS
    fragment_size: int = 300

    def __post_init__(self):
        if not self.query or not self.query.strip():
            raise ValueError("query must not be empty")
        if self.size <= 0:
            raise ValueError(f"size must be positive, got {self.size}")
        if self.fragment_size <= 0:
            raise ValueError(f"fragment_size must be positive, got {self.fragment_size}")

    def to_body(self) -> dict[str, Any]:
        bool_query: dict[str, Any] = {
            "must": {"match": {"content": {"query": self.query, "operator": "and"}}},
        }
        filters = site_filter(self.site)
        if filters:
            bool_query["filter"] = filters
        bool_query["should"] = [
            {"multi_match": {"query": term, "fields": list(BOOST_FIELDS), "type": "best_fields"}}
            for term in self.boost_terms
        ]
        bool_query["minimum_should_match"] = 0

        return {
            "size": self.size,
            "query": {"bool": bool_query},
            "highlight": {
                "fields": {"content": {"fragment_size": self.fragment_size, "number_of_fragments": 1}},
            },
            "_source": list(SOURCE_FIELDS),
        }


@dataclass(frozen=True)
class VectorSearchRequest:
    """Approximate kNN query over the embedding field, with the same optional site filter."""

    vector: Sequence[float] = field(repr=False)
    site: str | None = None
    k: int = 50
    num_candidates: int = 1000
    field_name: str = "embedding"

    def __post_init__(self):
        if not self.vector:
            raise ValueError("vector must not be empty")
        if self.k <= 0:
            raise ValueError(f"k must be positive, got {self.k}")
        if self.num_candidates < self.k:
            raise ValueError(f"num_candidates ({self.num_candidates}) must be >= k ({self.k})")

    def to_body(self) -> dict[str, Any]:
        knn: dict[str, Any] = {
            "field": self.field_name,
            "query_vector": list(self.vector),
            "k": self.k,
            "num_candidates": self.num_candidates,
        }
        filters = site_filter(self.site)
        if filters:
            knn["filter"] = filters
        return {"knn": knn, "size": self.k, "_source": list(SOURCE_FIELDS)}
