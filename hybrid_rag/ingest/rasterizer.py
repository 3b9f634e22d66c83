"""PDF page rasterization and PNG downscaling."""

import asyncio
import io
import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import fitz  # PyMuPDF
from PIL import Image

logger = logging.getLogger(__name__)

PageRenderer = Callable[[], Iterator[bytes | None]]


def _scaled_size(width: int, height: int, target_width: int) -> tuple[int, int]:
    return target_width, max(1, round(height * (target_width / width)))


def _encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def downscale_png(data: bytes, max_width: int) -> bytes:
    """Shrink an image to max_width (aspect preserved) and re-encode as PNG.

    Images that are already narrow enough, or cannot be decoded, are returned unchanged.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            if image.width <= max_width:
                return data
            resized = image.resize(_scaled_size(image.width, image.height, max_width), Image.LANCZOS)
            return _encode_png(resized)
    except (OSError, ValueError) as e:
        logger.debug(f"[RENDER] Could not downscale image ({e}), sending original")
        return data


def render_pages_as_png(
    pdf_path: str | Path,
    target_width: int | None = 1280,
    render_width: int = 1080,
    render_height: int = 1920,
) -> Iterator[bytes | None]:
    """Render every page of a PDF to PNG, lazily and in page order.

    Each page is rendered to fit a render_width x render_height box, then downsampled
    to target_width when wider. A page that fails to render yields None so the
    remaining pages keep their positions.

    Args:
        pdf_path: PDF file
        target_width: Maximum output width (None keeps the render size)
        render_width: Intermediate render box width in pixels
        render_height: Intermediate render box height in pixels

    Yields:
        PNG bytes per page, or None for a page that could not be rendered
    """
    with fitz.open(str(pdf_path)) as doc:
        for index, page in enumerate(doc):
            try:
                zoom = min(render_width / page.rect.width, render_height / page.rect.height)
                pixmap = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
                image = Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)
                if target_width and image.width > target_width:
                    image = image.resize(_scaled_size(image.width, image.height, target_width), Image.LANCZOS)
                png = _encode_png(image)
            except (RuntimeError, ValueError, ZeroDivisionError) as e:
                logger.warning(f"[RENDER] {Path(pdf_path).name} page {index + 1}: render failed ({e})")
                yield None
                continue
            yield png


class PageImageCache:
    """Render-on-first-need page images for one document.

    The renderer is only started when a page image is first requested, so documents
    whose pages never need a caption are never rasterized. Pages are consumed in order;
    images for pages passed over on the way to a requested index are kept until asked for.
    """

    _EXHAUSTED = object()

    def __init__(self, renderer: PageRenderer):
        self._renderer = renderer
        self._pages: Iterator[bytes | None] | None = None
        self._cache: dict[int, bytes | None] = {}
        self._next_index = 0
        self._exhausted = False

    @property
    def started(self) -> bool:
        return self._pages is not None

    async def get(self, index: int) -> bytes | None:
        """Return the PNG for page index, or None if it is missing or failed to render."""
        if index in self._cache:
            return self._cache.pop(index)

        if self._pages is None:
            self._pages = await asyncio.to_thread(self._renderer)

        while not self._exhausted and self._next_index <= index:
            image = await asyncio.to_thread(next, self._pages, self._EXHAUSTED)
            if image is self._EXHAUSTED:
                self._exhausted = True
                break
            self._cache[self._next_index] = image
            self._next_index += 1

        return self._cache.pop(index, None)

    def close(self):
        """Release the renderer (and the open PDF) if it was started."""
        if self._pages is not None and hasattr(self._pages, "close"):
            self._pages.close()
        self._cache.clear()
