"""Breadth-first site crawler.

Discovery works in two ways that feed the same frontier:
1. Sitemap seeding (<origin>/sitemap.xml, including sitemap indexes)
2. Link discovery (a[href] on every parsed page)

Only hosts on the allow-list (default: the start URL's host) are fetched, each
URL at most once, until the page budget is spent or the frontier is empty.
"""

import asyncio
import logging
import posixpath
import re
import sys
import xml.etree.ElementTree as ET
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import urldefrag, urljoin, urlparse

import aiohttp
from bs4 import BeautifulSoup
from tqdm import tqdm

from ..backends import Embedder
from ..config import RAGConfig
from ..errors import EmbeddingFailure, FrontierFetchFailure, SitemapUnavailable
from ..models import CorpusEntry, SiteCorpus
from ..text import normalize_whitespace, truncate
from .fusion import build_idf

if TYPE_CHECKING:
    from ..ingest.captioner import ImageCaptioner

logger = logging.getLogger(__name__)

SITEMAP_NAMESPACE = {"ns": "http://www.sitemaps.org/schemas/sitemap/0.9"}
REJECTED_SCHEMES = ("mailto:", "tel:", "data:", "javascript:")
MAX_HEADINGS = 5
HEADING_SEPARATOR = " · "
IMAGE_BLOCK_HEADER = "### Image descriptions"
CAPTION_CONTEXT_CHARS = 800
MAX_PDF_LINKS_PER_PAGE = 20

_LOC_RE = re.compile(r"<loc>\s*(.*?)\s*</loc>", re.IGNORECASE | re.DOTALL)


class PageState(Enum):
    DISCOVERED = "discovered"
    FETCHED = "fetched"
    PARSED = "parsed"
    FETCH_FAILED = "fetch_failed"
    SKIPPED = "skipped"


def normalize_url(base: str, href: str | None) -> str | None:
    """Resolve href against base and drop the fragment.

    Returns None for blank hrefs, mailto:/tel:/data:/javascript: links and anything
    that does not resolve to an http(s) URL.
    """
    if not href or not href.strip():
        return None
    href = href.strip()
    if href.lower().startswith(REJECTED_SCHEMES):
        return None
    try:
        absolute, _ = urldefrag(urljoin(base, href))
    except ValueError:
        return None
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return absolute


def frontier_key(url: str) -> str:
    """Dedup key: scheme + host + path, trailing slash stripped, compared case-insensitively.

    Examples:
        - https://example.com/a, https://example.com/a/ and https://example.com/a#frag
          share the key "https://example.com/a"
    """
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}".rstrip("/").casefold()


def host_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


class CrawlFrontier:
    """FIFO of URLs to visit plus the set of keys already seen.

    A URL is enqueued at most once and the pending queue never holds more than
    max_pages entries.
    """

    def __init__(self, allowed_hosts: set[str], max_pages: int):
        self.allowed_hosts = {h.lower() for h in allowed_hosts}
        self.max_pages = max_pages
        self._queue: deque[str] = deque()
        self._seen: set[str] = set()
        self.states: dict[str, PageState] = {}

    def __len__(self) -> int:
        return len(self._queue)

    def is_allowed(self, url: str) -> bool:
        return host_of(url) in self.allowed_hosts

    def add(self, url: str) -> bool:
        """Enqueue url unless its host is not allowed, it was seen already or the queue is full."""
        if not self.is_allowed(url):
            return False
        key = frontier_key(url)
        if key in self._seen or len(self._queue) >= self.max_pages:
            return False
        self._seen.add(key)
        self._queue.append(url)
        self.states[key] = PageState.DISCOVERED
        return True

    def pop(self) -> str | None:
        return self._queue.popleft() if self._queue else None

    def mark(self, url: str, state: PageState):
        self.states[frontier_key(url)] = state

    def state_of(self, url: str) -> PageState | None:
        return self.states.get(frontier_key(url))


def parse_sitemap(xml: str) -> tuple[list[str], list[str]]:
    """Parse a sitemap or sitemap index.

    Handles the sitemaps.org namespace and un-namespaced documents; falls back to a
    <loc> regex scan when the document is not well-formed XML.

    Returns:
        Tuple of (page locations, sub-sitemap locations)
    """
    try:
        tree = ET.fromstring(xml.strip().encode("utf-8"))
    except ET.ParseError:
        logger.debug("[CRAWLER] Sitemap is not well-formed XML, scanning for <loc> values")
        return [m.strip() for m in _LOC_RE.findall(xml) if m.strip()], []

    def locs(element_name: str) -> list[str]:
        elements = tree.findall(f"ns:{element_name}", SITEMAP_NAMESPACE) or tree.findall(element_name)
        found = []
        for element in elements:
            loc = element.find("ns:loc", SITEMAP_NAMESPACE)
            if loc is None:
                loc = element.find("loc")
            if loc is not None and loc.text and loc.text.strip():
                found.append(loc.text.strip())
        return found

    return locs("url"), locs("sitemap")


@dataclass
class ExtractedPage:
    title: str
    text: str
    headings: list[str] = field(default_factory=list)
    image_urls: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    pdf_links: list[str] = field(default_factory=list)


def extract_page(html: str, page_url: str) -> ExtractedPage:
    """Pull title, headings, readable text, images and links out of an HTML page.

    Body text comes from <main>, else <article>, else the whole body, after removing
    script/style/noscript. Headings are h1s, then h2s, then h3s, de-duplicated.
    """
    soup = BeautifulSoup(html, "html.parser")
    title = normalize_whitespace(soup.title.get_text()) if soup.title else ""

    body = soup.body or soup
    for element in body(["script", "style", "noscript"]):
        element.decompose()

    headings: list[str] = []
    for tag in ("h1", "h2", "h3"):
        for heading in body.find_all(tag):
            text = normalize_whitespace(heading.get_text(" "))
            if text and text not in headings:
                headings.append(text)

    main = body.find("main") or body.find("article") or body
    text = normalize_whitespace(main.get_text(" "))

    image_urls = []
    for img in body.find_all("img", src=True):
        url = normalize_url(page_url, img["src"])
        if url and url not in image_urls:
            image_urls.append(url)

    links = []
    pdf_links = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.startswith("#"):
            continue
        url = normalize_url(page_url, href)
        if not url:
            continue
        links.append(url)
        if ".pdf" in href.lower() and url.casefold() not in {p.casefold() for p in pdf_links}:
            pdf_links.append(url)

    return ExtractedPage(
        title=title,
        text=text,
        headings=headings,
        image_urls=image_urls,
        links=links,
        pdf_links=pdf_links[:MAX_PDF_LINKS_PER_PAGE],
    )


def compose_page_content(page: ExtractedPage, captions: list[tuple[str, str]] | None = None) -> str:
    """Headings line, body text and an optional image-descriptions block, blank-line separated."""
    parts = []
    if page.headings:
        parts.append(HEADING_SEPARATOR.join(page.headings[:MAX_HEADINGS]))
    if page.text.strip():
        parts.append(page.text.strip())
    if captions:
        lines = [IMAGE_BLOCK_HEADER] + [f"[{name}] {caption}" for name, caption in captions]
        parts.append("\n".join(lines))
    return "\n\n".join(parts).strip()


@dataclass
class FetchedPage:
    url: str
    final_url: str
    status: int
    content_type: str
    text: str


@dataclass
class CrawledPage:
    """A parsed page ready for embedding."""

    url: str
    title: str
    content: str
    pdf_links: list[str] = field(default_factory=list)


class HttpFetcher:
    """aiohttp session wrapper for crawl requests.

    Use as an async context manager so the session is closed.
    """

    def __init__(self, user_agent: str, timeout: float = 20.0):
        self.user_agent = user_agent
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(timeout=self.timeout, headers={"User-Agent": self.user_agent})
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            raise RuntimeError("HttpFetcher must be used as 'async with HttpFetcher(...)'")
        return self.session

    async def get_page(self, url: str) -> FetchedPage:
        """GET url following redirects.

        Raises:
            FrontierFetchFailure: on transport errors or a non-2xx status
        """
        try:
            async with self._require_session().get(url, allow_redirects=True) as response:
                if response.status >= 400:
                    raise FrontierFetchFailure(f"{url}: HTTP {response.status}")
                content_type = response.headers.get("Content-Type", "")
                text = await response.text(errors="replace") if "html" in content_type.lower() else ""
                return FetchedPage(
                    url=url,
                    final_url=str(response.url),
                    status=response.status,
                    content_type=content_type,
                    text=text,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FrontierFetchFailure(f"{url}: {str(e) or type(e).__name__}") from e

    async def get_text(self, url: str) -> str:
        return (await self._read(url)).decode("utf-8", errors="replace")

    async def get_bytes(self, url: str) -> bytes:
        return await self._read(url)

    async def _read(self, url: str) -> bytes:
        try:
            async with self._require_session().get(url, allow_redirects=True) as response:
                if response.status >= 400:
                    raise FrontierFetchFailure(f"{url}: HTTP {response.status}")
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FrontierFetchFailure(f"{url}: {str(e) or type(e).__name__}") from e


class SiteCrawler:
    """Crawls one site breadth-first and turns its pages into corpus content."""

    def __init__(self, config: RAGConfig, fetcher, captioner: "ImageCaptioner | None" = None):
        """Initialize the crawler.

        Args:
            config: Page budget, captioning flags and progress settings
            fetcher: Object with async get_page(url), get_text(url) and get_bytes(url)
            captioner: Optional shared captioner for page images
        """
        self.config = config
        self.fetcher = fetcher
        self.captioner = captioner

    async def discover_sitemap_urls(self, start_url: str, max_depth: int = 2) -> list[str]:
        """Fetch <origin>/sitemap.xml and return every page location it lists.

        Sub-sitemaps of a sitemap index are followed up to max_depth levels.

        Raises:
            SitemapUnavailable: when the root sitemap cannot be fetched or lists nothing
        """
        parsed = urlparse(start_url)
        sitemap_url = f"{parsed.scheme}://{parsed.netloc}/sitemap.xml"
        logger.info(f"[CRAWLER] Fetching sitemap: {sitemap_url}")

        try:
            xml = await self.fetcher.get_text(sitemap_url)
        except FrontierFetchFailure as e:
            raise SitemapUnavailable(str(e)) from e

        urls, sub_sitemaps = parse_sitemap(xml)
        pending = [(s, 1) for s in sub_sitemaps]
        while pending:
            sub_url, depth = pending.pop(0)
            if depth > max_depth:
                continue
            try:
                sub_urls, nested = parse_sitemap(await self.fetcher.get_text(sub_url))
            except FrontierFetchFailure as e:
                logger.warning(f"[CRAWLER] Failed to fetch sub-sitemap {sub_url}: {e}")
                continue
            urls.extend(sub_urls)
            pending.extend((n, depth + 1) for n in nested)

        if not urls:
            raise SitemapUnavailable(f"{sitemap_url} lists no URLs")
        logger.info(f"[CRAWLER] Sitemap lists {len(urls)} URL(s)")
        return urls

    async def crawl(
        self,
        start_url: str,
        allowed_hosts: list[str] | None = None,
        max_pages: int | None = None,
        use_sitemap: bool = True,
        include_images: bool = True,
    ) -> list[CrawledPage]:
        """Crawl from start_url and return the parsed pages in visit order.

        Args:
            start_url: Absolute http(s) URL to start from
            allowed_hosts: Hosts that may be fetched (default: the start URL's host)
            max_pages: Page budget (default: config.max_pages)
            use_sitemap: Seed the frontier from the site's sitemap.xml
            include_images: Caption page images when captioning is enabled

        Returns:
            Pages with non-empty content
        """
        start = normalize_url(start_url, start_url)
        if not start:
            raise ValueError(f"start URL must be an absolute http(s) URL, got {start_url!r}")

        budget = max_pages or self.config.max_pages
        frontier = CrawlFrontier(set(allowed_hosts or [host_of(start)]), budget)
        frontier.add(start)

        if use_sitemap:
            try:
                for loc in await self.discover_sitemap_urls(start):
                    url = normalize_url(start, loc)
                    if url:
                        frontier.add(url)
            except SitemapUnavailable as e:
                logger.info(f"[CRAWLER] No usable sitemap ({e}), continuing with link discovery")

        pages: list[CrawledPage] = []
        failed = 0
        pbar = tqdm(total=budget, desc="Crawling", unit="page", disable=not self.config.show_progress, file=sys.stderr)
        try:
            while len(pages) < budget:
                url = frontier.pop()
                if url is None:
                    break

                try:
                    fetched = await self.fetcher.get_page(url)
                except FrontierFetchFailure as e:
                    frontier.mark(url, PageState.FETCH_FAILED)
                    failed += 1
                    logger.warning(f"[CRAWLER] Failed to fetch {e}")
                    continue
                frontier.mark(url, PageState.FETCHED)

                if not frontier.is_allowed(fetched.final_url):
                    frontier.mark(url, PageState.SKIPPED)
                    logger.warning(f"[CRAWLER] Redirect to external host blocked: {url} -> {fetched.final_url}")
                    continue
                if "html" not in fetched.content_type.lower():
                    frontier.mark(url, PageState.SKIPPED)
                    logger.debug(f"[CRAWLER] Skipping non-HTML content: {url} ({fetched.content_type})")
                    continue

                extracted = extract_page(fetched.text, fetched.final_url)
                for link in extracted.links:
                    frontier.add(link)

                captions = await self.caption_images(url, extracted) if include_images else []
                content = compose_page_content(extracted, captions)
                if not content:
                    frontier.mark(url, PageState.SKIPPED)
                    logger.debug(f"[CRAWLER] Empty content: {url}")
                    continue

                frontier.mark(url, PageState.PARSED)
                pages.append(
                    CrawledPage(url=url, title=extracted.title or url, content=content, pdf_links=extracted.pdf_links)
                )
                pbar.update(1)
                pbar.set_postfix_str(f"queue={len(frontier)}, failed={failed}", refresh=False)
        finally:
            pbar.close()

        logger.info(f"[CRAWLER] Crawl complete: {len(pages)} page(s) parsed, {failed} failed")
        return pages

    async def caption_images(self, page_url: str, page: ExtractedPage) -> list[tuple[str, str]]:
        """Caption up to crawl_caption_max_images images; failures skip the image."""
        if not (self.captioner and self.config.image_captions and self.config.openai_api_key):
            return []

        captions: list[tuple[str, str]] = []
        context = truncate(page.text, CAPTION_CONTEXT_CHARS)
        hint = f"Page: {page_url}. Describe the image briefly in the context of the page text: \"{context}\""
        for image_url in page.image_urls:
            if len(captions) >= self.config.crawl_caption_max_images:
                break
            try:
                image = await self.fetcher.get_bytes(image_url)
                caption = await self.captioner.describe(
                    image, self.config.openai_api_key, site=host_of(page_url), task_hint=hint
                )
            except FrontierFetchFailure as e:
                logger.debug(f"[CRAWLER] Image skipped: {e}")
                continue
            if caption.strip():
                captions.append((posixpath.basename(urlparse(image_url).path), caption.strip()))
        return captions


async def build_corpus(pages: list[CrawledPage], embedder: Embedder, show_progress: bool = True) -> SiteCorpus:
    """Embed every crawled page, then compute the IDF table over the whole corpus.

    Pages whose embedding fails are left out with a warning.
    """
    entries: list[CorpusEntry] = []
    for page in tqdm(pages, desc="Embedding pages", unit="page", disable=not show_progress, file=sys.stderr):
        try:
            embedding = await embedder.embed(page.content)
        except EmbeddingFailure as e:
            logger.warning(f"[CRAWLER] Embedding failed for {page.url}: {e}")
            continue
        entries.append(CorpusEntry(url=page.url, title=page.title, content=page.content, embedding=embedding))

    corpus = SiteCorpus.build(entries, build_idf(e.content for e in entries))
    logger.info(f"[CRAWLER] Built corpus: {len(corpus)} page(s), {len(corpus.idf)} terms")
    return corpus
