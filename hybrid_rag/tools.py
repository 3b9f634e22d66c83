"""LangChain tool exposing hybrid retrieval to an agent or chat orchestrator.

Example:
    >>> from hybrid_rag import RAGConfig, create_knowledge_search_tool
    >>> from hybrid_rag.rag import ElasticsearchStore, store_retriever
    >>> config = RAGConfig.from_env()
    >>> async with ElasticsearchStore(config) as store:
    ...     tool = create_knowledge_search_tool(store_retriever(store, embedder, config), site="intranet")
    ...     print(await tool.ainvoke({"query": "monteringsanvisning for vindu"}))
"""

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field

from .models import RetrievalResult
from .rag.retrieval import HybridRetriever


class KnowledgeSearchInput(BaseModel):
    """Input schema for knowledge search tool."""

    query: str = Field(description="The question or search terms (e.g., 'hvordan montere terrassebord')")
    take: int | None = Field(default=None, description="Maximum number of passages to return.")


def format_results(result: RetrievalResult) -> str:
    """Render passages as numbered blocks with their source."""
    if result.is_empty():
        return "No matching documents found."

    blocks = []
    for i, (source, context) in enumerate(zip(result.sources, result.contexts), start=1):
        location = source.source_path or source.id
        if source.page is not None:
            location += f" (page {source.page})"
        blocks.append(f"[{i}] {source.title} — {location}\n{context}")
    return "\n\n".join(blocks)


def create_knowledge_search_tool(retriever: HybridRetriever, site: str | None = None, take: int = 8) -> StructuredTool:
    """Create a knowledge search tool bound to a retriever.

    Args:
        retriever: HybridRetriever over the persistent index or a crawled corpus
        site: Optional site tag every search is restricted to
        take: Default number of passages

    Returns:
        LangChain StructuredTool (async) for knowledge search
    """

    default_take = take

    async def _search(query: str, take: int | None = None) -> str:
        result = await retriever.retrieve(query, site=site, take=take or default_take)
        return format_results(result)

    return StructuredTool.from_function(
        coroutine=_search,
        name="knowledge_search",
        description=(
            "Search the indexed documents (manuals, installation guides, web pages) with combined keyword "
            "and semantic search. Returns the most relevant passages with their source path or URL."
        ),
        args_schema=KnowledgeSearchInput,
    )


__all__ = [
    "KnowledgeSearchInput",
    "create_knowledge_search_tool",
    "format_results",
]
