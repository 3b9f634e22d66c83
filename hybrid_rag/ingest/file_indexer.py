"""Folder ingestion: discover files, extract, caption, embed and write to the store.

Each file is handled end-to-end by one task; tasks run under a semaphore so at most
max_concurrency files are in flight. Failures are logged per file and never cancel
the batch.
"""

import asyncio
import logging
import re
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from tqdm import tqdm

from ..backends import Embedder
from ..config import RAGConfig
from ..errors import EmptyContent, ExtractionError, StoreWriteFailure, UnsupportedFormat
from ..models import Document
from ..text import truncate
from .captioner import ImageCaptioner
from .extractors import SUPPORTED_EXTENSIONS, caption_marker, extract_text, read_pdf_pages, text_marker
from .rasterizer import PageImageCache, PageRenderer, render_pages_as_png

logger = logging.getLogger(__name__)

PATTERN_SEPARATORS_RE = re.compile(r"[;,\s]+")
FIGURE_HINT_RE = re.compile(r"\b(figur|figure|tabell|table|chart|diagram|graf)\b", re.IGNORECASE)

# Characters of the page's own text sent along as caption context
CAPTION_CONTEXT_CHARS = 800


class DocumentStore(Protocol):
    async def upsert(self, index_name: str, document: Document) -> str: ...


def split_patterns(pattern: str) -> list[str]:
    """Split a pattern list separated by ';', ',' or whitespace."""
    return [p for p in PATTERN_SEPARATORS_RE.split(pattern or "") if p]


def discover_files(folder: str | Path, pattern: str, recursive: bool) -> list[Path]:
    """Glob every pattern against folder and return the union, de-duplicated case-insensitively.

    Order follows the patterns, then the filesystem listing, with the first spelling kept.
    """
    root = Path(folder)
    seen: set[str] = set()
    files: list[Path] = []
    for glob_pattern in split_patterns(pattern):
        matches = root.rglob(glob_pattern) if recursive else root.glob(glob_pattern)
        for path in sorted(matches):
            if not path.is_file():
                continue
            key = str(path).casefold()
            if key not in seen:
                seen.add(key)
                files.append(path)
    return files


def should_caption_page(page_text: str, config: RAGConfig) -> bool:
    """Decide whether a PDF page gets a vision caption.

    Requires both image-captions and render-pages. "always" captions every page,
    "never" none; "auto" captions sparse pages (shorter than text_min_chars, or with
    no text at all) and pages that mention a figure, table or chart.
    """
    if not (config.image_captions and config.render_pages):
        return False
    if config.caption_mode == "always":
        return True
    if config.caption_mode != "auto":
        return False

    trimmed = page_text.strip()
    has_some_text = len(trimmed) >= config.text_min_chars
    looks_like_figure = bool(FIGURE_HINT_RE.search(trimmed))
    return not trimmed or not has_some_text or looks_like_figure


def caption_hint(page_number: int, page_text: str) -> str:
    context = truncate(page_text.strip(), CAPTION_CONTEXT_CHARS)
    hint = (
        f"PDF page {page_number}. Read the image and briefly describe the figure, image or table. "
        "Relate the description to the text on this page where relevant (terminology, steps, measurements)."
    )
    if context:
        hint += f' Text on the page (context): "{context}"'
    return hint


class FileIndexer:
    """Indexes a folder of documents into the persistent store."""

    def __init__(
        self,
        config: RAGConfig,
        captioner: ImageCaptioner | None = None,
        page_renderer: Callable[[Path], PageRenderer] | None = None,
    ):
        """Initialize the indexer.

        Args:
            config: Captioning flags, thresholds and render settings
            captioner: Shared captioner (one per process); a disabled one is created if omitted
            page_renderer: Builds a lazy page-image renderer for a PDF path
        """
        self.config = config
        self.captioner = captioner or ImageCaptioner(config)
        self.page_renderer = page_renderer or self._default_renderer

    def _default_renderer(self, path: Path) -> PageRenderer:
        def render():
            return render_pages_as_png(
                path,
                target_width=self.config.page_target_width,
                render_width=self.config.render_width,
                render_height=self.config.render_height,
            )

        return render

    async def index_folder(
        self,
        store: DocumentStore,
        embedder: Embedder,
        index_name: str,
        folder: str | Path,
        pattern: str,
        recursive: bool,
        site: str | None = None,
        max_concurrency: int = 2,
    ) -> int:
        """Index every file matching pattern under folder.

        Args:
            store: Persistent store receiving the documents
            embedder: Embedding client
            index_name: Target index
            folder: Root folder
            pattern: One or more glob patterns separated by ';', ',' or whitespace
            recursive: Search sub-folders too
            site: Optional scope tag written on every document
            max_concurrency: Files processed at the same time

        Returns:
            Number of files discovered (not the number indexed successfully)
        """
        files = discover_files(folder, pattern, recursive)
        logger.info(f"[INDEX] Found {len(files)} file(s) in {folder} matching '{pattern}' (recursive={recursive})")
        if not files:
            return 0

        throttler = asyncio.Semaphore(max_concurrency)
        pbar = tqdm(total=len(files), desc="Indexing files", unit="file", disable=not self.config.show_progress, file=sys.stderr)

        async def run(path: Path) -> bool:
            async with throttler:
                try:
                    return await self.index_file(store, embedder, index_name, path, site)
                finally:
                    pbar.update(1)

        try:
            results = await asyncio.gather(*(run(path) for path in files))
        finally:
            pbar.close()

        logger.info(f"[INDEX] Done: {sum(results)} of {len(files)} file(s) indexed into '{index_name}'")
        return len(files)

    async def index_file(
        self,
        store: DocumentStore,
        embedder: Embedder,
        index_name: str,
        path: Path,
        site: str | None = None,
    ) -> bool:
        """Process one file end-to-end. Never raises; returns True when the document was written."""
        name = path.name
        try:
            captions = 0
            if path.suffix.lower() == ".pdf":
                content, captions = await self.extract_pdf_content(path, site)
            elif path.suffix.lower() in SUPPORTED_EXTENSIONS:
                content = await asyncio.to_thread(extract_text, path)
            else:
                raise UnsupportedFormat(str(path), f"unsupported file type '{path.suffix.lower() or '<none>'}'")

            if not content or not content.strip():
                logger.info(f"[INDEX] {name}: empty content, skipping")
                return False

            document = Document(
                title=path.stem,
                content=content,
                source_path=str(path),
                site=site,
            )
            document.embedding = await embedder.embed(content)
            await store.upsert(index_name, document)
        except UnsupportedFormat as e:
            logger.info(f"[INDEX] Skipping {name}: {e}")
            return False
        except EmptyContent:
            logger.info(f"[INDEX] {name}: empty content, skipping")
            return False
        except ExtractionError as e:
            logger.warning(f"[INDEX] {name}: extraction failed: {e}")
            return False
        except StoreWriteFailure as e:
            logger.error(f"[INDEX] ERROR {name}: {e.reason}")
            return False
        except Exception as e:
            logger.error(f"[INDEX] {name}: {e}")
            return False

        extra = f" (captions: {captions})" if path.suffix.lower() == ".pdf" else ""
        logger.info(f"[INDEX] {name}: indexed{extra}")
        return True

    async def extract_pdf_content(self, path: Path, site: str | None = None) -> tuple[str, int]:
        """Build PDF content: per page a text block, then an optional caption block.

        Returns:
            Tuple of (content, number of captions added)
        """
        pages = await asyncio.to_thread(read_pdf_pages, path)
        images = PageImageCache(self.page_renderer(path))
        blocks: list[str] = []
        captions = 0

        try:
            for page in pages:
                if page.text:
                    blocks.append(f"{text_marker(page.number)}\n{page.text}")

                if not should_caption_page(page.text, self.config):
                    continue

                try:
                    image = await images.get(page.index)
                    if image is None:
                        continue
                    caption = await self.captioner.describe(
                        image,
                        self.config.openai_api_key,
                        site=site,
                        task_hint=caption_hint(page.number, page.text),
                    )
                except Exception as e:
                    logger.warning(f"[CAPTION] {path.name} page {page.number}: {e} (ignored)")
                    continue

                if caption.strip():
                    blocks.append(f"{caption_marker(page.number)}\n{caption.strip()}")
                    captions += 1
        finally:
            images.close()

        return "\n\n".join(blocks).strip(), captions
