"""Crawl a site into the persistent store.

Every parsed page is embedded and written under its URL; PDFs linked from those
pages are downloaded, extracted and written under the PDF's URL.
"""

import asyncio
import logging
import posixpath
from urllib.parse import urlparse

from ..backends import Embedder
from ..config import RAGConfig
from ..errors import ExtractionError, EmbeddingFailure, FrontierFetchFailure, StoreWriteFailure
from ..models import Document
from ..rag.crawler import CrawledPage, SiteCrawler
from .extractors import join_pdf_pages, read_pdf_pages
from .file_indexer import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_PDF_TITLE = "Monteringsanvisning"


class SiteIndexer:
    """Indexes crawled pages and their linked PDFs."""

    def __init__(self, config: RAGConfig, crawler: SiteCrawler):
        self.config = config
        self.crawler = crawler

    async def index_site(
        self,
        store: DocumentStore,
        embedder: Embedder,
        index_name: str,
        start_url: str,
        site: str | None = None,
        max_pages: int | None = None,
        use_sitemap: bool = True,
    ) -> tuple[int, int]:
        """Crawl start_url and upsert every page (and linked PDF) into index_name.

        Returns:
            Tuple of (documents written, documents failed)
        """
        pages = await self.crawler.crawl(start_url, max_pages=max_pages, use_sitemap=use_sitemap)
        logger.info(f"[SITE] {len(pages)} page(s) to index from {start_url}")

        ok = failed = 0
        seen_pdfs: set[str] = set()
        for page in pages:
            for pdf_url in page.pdf_links:
                if pdf_url.casefold() in seen_pdfs:
                    continue
                seen_pdfs.add(pdf_url.casefold())
                result = await self.index_pdf(store, embedder, index_name, pdf_url, site)
                if result is True:
                    ok += 1
                elif result is False:
                    failed += 1

            if await self.index_page(store, embedder, index_name, page, site):
                ok += 1
            else:
                failed += 1

        logger.info(f"[SITE] Done. OK={ok}, FAIL={failed}")
        return ok, failed

    async def index_page(
        self,
        store: DocumentStore,
        embedder: Embedder,
        index_name: str,
        page: CrawledPage,
        site: str | None = None,
    ) -> bool:
        document = Document(title=page.title, content=page.content, source_path=page.url, site=site)
        try:
            document.embedding = await embedder.embed(page.content)
            await store.upsert(index_name, document)
        except StoreWriteFailure as e:
            logger.error(f"[SITE] FAIL {page.url}: {e.reason}")
            return False
        except EmbeddingFailure as e:
            logger.error(f"[SITE] {page.url}: {e}")
            return False
        logger.info(f"[SITE] OK: {page.url}")
        return True

    async def index_pdf(
        self,
        store: DocumentStore,
        embedder: Embedder,
        index_name: str,
        pdf_url: str,
        site: str | None = None,
    ) -> bool | None:
        """Download, extract and upsert one linked PDF.

        Returns:
            True when written, False on failure, None when the PDF has no text
        """
        try:
            data = await self.crawler.fetcher.get_bytes(pdf_url)
            pages = await asyncio.to_thread(read_pdf_pages, data, pdf_url)
            content = join_pdf_pages(pages)
            if not content.strip():
                logger.info(f"[SITE][PDF] {pdf_url}: no text, skipping")
                return None

            title = posixpath.splitext(posixpath.basename(urlparse(pdf_url).path))[0] or DEFAULT_PDF_TITLE
            document = Document(title=title, content=content, source_path=pdf_url, site=site)
            document.embedding = await embedder.embed(content)
            await store.upsert(index_name, document)
        except StoreWriteFailure as e:
            logger.error(f"[SITE][PDF] FAIL {pdf_url}: {e.reason}")
            return False
        except (FrontierFetchFailure, ExtractionError, EmbeddingFailure) as e:
            logger.error(f"[SITE][PDF] {pdf_url}: {e}")
            return False

        logger.info(f"[SITE][PDF] OK: {pdf_url}")
        return True
