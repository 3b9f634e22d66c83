"""Document ingestion: extraction, page rendering, captioning and indexing."""

from .captioner import ImageCaptioner
from .extractors import SUPPORTED_EXTENSIONS, extract_text, read_pdf_pages, strip_html
from .file_indexer import FileIndexer, should_caption_page
from .site_indexer import SiteIndexer

__all__ = [
    "SUPPORTED_EXTENSIONS",
    "FileIndexer",
    "ImageCaptioner",
    "SiteIndexer",
    "extract_text",
    "read_pdf_pages",
    "should_caption_page",
    "strip_html",
]
