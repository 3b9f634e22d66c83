"""Per-format text extraction.

Supported formats:
- PDF (.pdf): text per page with PyMuPDF
- Word (.docx): main document XML part read straight from the zip archive
- HTML (.html, .htm): BeautifulSoup with script/style/noscript removed
- Plain text (.txt, .md): whitespace normalization only
"""

import html
import logging
import re
import zipfile
from pathlib import Path

import fitz  # PyMuPDF
from bs4 import BeautifulSoup

from ..errors import CorruptDocument, EmptyContent, UnsupportedFormat
from ..models import PageText
from ..text import normalize_whitespace

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".pdf", ".txt", ".md", ".html", ".htm", ".docx")

DOCX_MAIN_PART = "word/document.xml"

_DOCX_PARAGRAPH_END_RE = re.compile(r"</w:p>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


def text_marker(page_number: int) -> str:
    return f"[Page {page_number} - text]"


def caption_marker(page_number: int) -> str:
    return f"[Page {page_number} - image/figure]"


def strip_html(markup: str) -> str:
    """Convert HTML to normalized plain text.

    script, style and noscript elements are removed together with their content
    before the remaining tags are stripped; entities are decoded by the parser.
    """
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(["script", "style", "noscript"]):
        element.decompose()
    return normalize_whitespace(soup.get_text(separator=" "))


def docx_xml_to_text(xml: str) -> str:
    """Turn WordprocessingML into text: paragraph ends become newlines, tags are dropped."""
    xml = _DOCX_PARAGRAPH_END_RE.sub("\n", xml)
    xml = _TAG_RE.sub(" ", xml)
    return normalize_whitespace(html.unescape(xml))


def read_text_file(path: str | Path) -> str:
    return normalize_whitespace(Path(path).read_text(encoding="utf-8", errors="replace"))


def read_html_file(path: str | Path) -> str:
    return strip_html(Path(path).read_text(encoding="utf-8", errors="replace"))


def read_docx(path: str | Path) -> str:
    """Read the main document part of a .docx archive.

    Raises:
        CorruptDocument: if the file is not a zip archive or lacks word/document.xml
    """
    try:
        with zipfile.ZipFile(path) as archive:
            xml = archive.read(DOCX_MAIN_PART).decode("utf-8", errors="replace")
    except zipfile.BadZipFile as e:
        raise CorruptDocument(str(path), f"not a valid docx archive ({e})") from e
    except KeyError as e:
        raise CorruptDocument(str(path), f"missing {DOCX_MAIN_PART}") from e
    return docx_xml_to_text(xml)


def read_pdf_pages(source: str | Path | bytes, name: str | None = None) -> list[PageText]:
    """Extract normalized text for every page, in page order.

    Args:
        source: File path or raw PDF bytes
        name: Label used in errors when source is bytes

    Returns:
        One PageText per page (text may be empty for image-only pages)

    Raises:
        CorruptDocument: if PyMuPDF cannot open or read the document
    """
    label = name or (str(source) if not isinstance(source, bytes) else "<pdf bytes>")
    try:
        if isinstance(source, bytes):
            doc = fitz.open(stream=source, filetype="pdf")
        else:
            doc = fitz.open(str(source))
    except (RuntimeError, ValueError) as e:
        raise CorruptDocument(label, f"cannot open PDF ({e})") from e

    if doc.page_count == 0:
        doc.close()
        raise CorruptDocument(label, "PDF has no pages")

    pages = []
    try:
        for index, page in enumerate(doc):
            pages.append(PageText(index=index, text=normalize_whitespace(page.get_text())))
    except (RuntimeError, ValueError) as e:
        raise CorruptDocument(label, f"failed reading page {len(pages) + 1} ({e})") from e
    finally:
        doc.close()
    return pages


def join_pdf_pages(pages: list[PageText]) -> str:
    """Concatenate page texts, each under its page marker; blank pages are left out."""
    blocks = [f"{text_marker(p.number)}\n{p.text}" for p in pages if p.text]
    return "\n\n".join(blocks)


def extract_text(path: str | Path) -> str:
    """Extract normalized text from a supported file.

    Files that exist but cannot be read (permissions, I/O errors) are logged and
    yield an empty string instead of raising.

    Raises:
        UnsupportedFormat: extension has no extractor
        CorruptDocument: file could not be parsed
        EmptyContent: file parsed but contains no text
    """
    path = Path(path)
    ext = path.suffix.lower()

    try:
        if ext == ".pdf":
            text = join_pdf_pages(read_pdf_pages(path))
        elif ext in (".txt", ".md"):
            text = read_text_file(path)
        elif ext in (".html", ".htm"):
            text = read_html_file(path)
        elif ext == ".docx":
            text = read_docx(path)
        else:
            raise UnsupportedFormat(str(path), f"unsupported file type '{ext or '<none>'}'")
    except OSError as e:
        logger.warning(f"[EXTRACT] Cannot read {path.name}: {e}")
        return ""

    if not text.strip():
        raise EmptyContent(str(path), "no extractable text")
    return text
