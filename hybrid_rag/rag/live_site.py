"""Crawl-and-answer over a live site without touching the persistent index."""

import logging

from ..backends import AnswerGenerator, Embedder
from ..config import RAGConfig
from ..models import CONTEXT_SEPARATOR, SiteCorpus
from .crawler import SiteCrawler, build_corpus
from .retrieval import corpus_retriever

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """You are a helpful assistant. Use only the context below to answer briefly and precisely in {language}.
State concrete measurements and units when the context gives them (mm, cm, m). If the answer is not in the context,
answer "{no_answer}". Mention which source (URL) you used.

Context:
{context}

Question: {question}
Answer:"""


def build_prompt(question: str, blocks: list[str], language: str, no_answer: str) -> str:
    return PROMPT_TEMPLATE.format(
        language=language,
        no_answer=no_answer,
        context=CONTEXT_SEPARATOR.join(blocks),
        question=question,
    )


class LiveSiteQA:
    """Builds an in-memory corpus from a crawled site and answers questions against it."""

    def __init__(
        self,
        config: RAGConfig,
        embedder: Embedder,
        generator: AnswerGenerator,
        crawler: SiteCrawler,
    ):
        self.config = config
        self.embedder = embedder
        self.generator = generator
        self.crawler = crawler

    async def build_corpus(
        self,
        start_url: str,
        allowed_hosts: list[str] | None = None,
        max_pages: int | None = None,
        use_sitemap: bool = True,
        include_images: bool = True,
    ) -> SiteCorpus:
        """Crawl start_url, embed every page and compute the corpus IDF table."""
        pages = await self.crawler.crawl(
            start_url,
            allowed_hosts=allowed_hosts,
            max_pages=max_pages,
            use_sitemap=use_sitemap,
            include_images=include_images,
        )
        return await build_corpus(pages, self.embedder, show_progress=self.config.show_progress)

    async def ask(self, question: str, corpus: SiteCorpus, take: int = 6) -> str:
        """Answer question from the corpus.

        Returns the configured "I don't know" text when the corpus is empty or
        nothing relevant is retrieved; otherwise the generator's reply.
        """
        if len(corpus) == 0:
            return self.config.no_answer_text

        retriever = corpus_retriever(corpus, self.embedder, rrf_k=self.config.rrf_k)
        result = await retriever.retrieve(question, take=take)
        if result.is_empty():
            return self.config.no_answer_text

        blocks = [
            f"[Source] {source.title} — {source.source_path}\n{context}"
            for source, context in zip(result.sources, result.contexts)
        ]
        prompt = build_prompt(question, blocks, self.config.caption_language, self.config.no_answer_text)
        logger.debug(f"[RAG] Asking with {len(blocks)} context block(s)")

        answer = await self.generator.generate(prompt)
        return answer.strip() or self.config.no_answer_text
