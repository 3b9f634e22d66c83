"""Configuration for ingestion, crawling and hybrid retrieval."""

import os
from dataclasses import dataclass
from typing import Literal

CaptionMode = Literal["always", "auto", "never"]
CAPTION_MODES = ("always", "auto", "never")

# Vocabulary that tends to point at installation guides and manuals
DEFAULT_BOOST_TERMS = (
    "monter",
    "montering",
    "monteringsanvisning",
    "montasje",
    "installasjon",
    "installasjonsveiledning",
    "manual",
    "veiledning",
)

DEFAULT_USER_AGENT = "hybrid-rag/0.1 (+https://github.com/hybrid-rag/hybrid-rag)"


@dataclass(frozen=True)
class RAGConfig:
    """Immutable configuration passed explicitly into every component.

    Attributes:
        es_url: Base URL of the Elasticsearch cluster
        index_name: Index holding persisted documents
        es_api_key: Optional Elasticsearch API key
        embedding_dimensions: Fixed vector size of the index's dense_vector field
        index_analyzer: Language analyzer used for the content field

        # Provider settings
        openai_api_key: Key for embeddings, vision captions and answer generation
        openai_base_url: Optional OpenAI-compatible endpoint
        embedding_model / chat_model / vision_model: Model names
        embedding_max_retries: SDK-level retry budget for embedding calls

        # Captioning (image-captions, render-pages, caption-mode, ...)
        image_captions: Enables vision captioning of PDF pages and crawled images
        render_pages: Enables PDF page rasterization
        caption_mode: "always" | "auto" | "never"
        text_min_chars: Pages with fewer characters count as sparse in auto mode
        caption_max_width: Images wider than this are downscaled before captioning
        caption_timeout_seconds: Hard timeout for each vision attempt
        caption_max_concurrency: Process-wide number of concurrent vision calls
        caption_max_retries: Additional attempts after the first vision call
        caption_language: Language captions and answers are written in
        crawl_caption_max_images: Images captioned per crawled page

        # Rendering
        render_width / render_height: Intermediate page render box in pixels
        page_target_width: Rendered pages wider than this are downsampled

        # Ingestion and crawling
        max_concurrency: Concurrent files during folder ingestion
        max_pages: Crawl page budget
        request_timeout: HTTP timeout in seconds for crawl fetches and store calls
        store_max_retries: Retry budget for transient store errors

        # Retrieval
        rrf_k: Reciprocal Rank Fusion constant
        knn_k / knn_num_candidates: Approximate nearest neighbour parameters
        lexical_size: Lexical hits requested from the store
        boost_terms: Extra should-clauses that lift manual-type documents
    """

    # Store settings
    es_url: str = "http://localhost:9200"
    index_name: str = "hybrid-rag"
    es_api_key: str = ""
    embedding_dimensions: int = 1536
    index_analyzer: str = "norwegian"

    # Provider settings
    openai_api_key: str = ""
    openai_base_url: str | None = None
    embedding_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-4o-mini"
    vision_model: str = "gpt-4o-mini"
    embedding_max_retries: int = 3

    # Captioning
    image_captions: bool = False
    render_pages: bool = False
    caption_mode: CaptionMode = "auto"
    text_min_chars: int = 200
    caption_max_width: int = 1024
    caption_timeout_seconds: float = 30.0
    caption_max_concurrency: int = 1
    caption_max_retries: int = 2
    caption_language: str = "Norwegian"
    crawl_caption_max_images: int = 3

    # Rendering
    render_width: int = 1080
    render_height: int = 1920
    page_target_width: int = 1280

    # Ingestion and crawling
    max_concurrency: int = 2
    max_pages: int = 200
    request_timeout: float = 20.0
    store_max_retries: int = 2
    user_agent: str = DEFAULT_USER_AGENT
    show_progress: bool = True

    # Retrieval
    rrf_k: int = 60
    knn_k: int = 50
    knn_num_candidates: int = 1000
    lexical_size: int = 20
    boost_terms: tuple[str, ...] = DEFAULT_BOOST_TERMS
    no_answer_text: str = "Jeg vet dessverre ikke."

    # Run settings
    folder: str = ""
    pattern: str = "*.pdf,*.docx,*.txt"
    recursive: bool = True
    site: str | None = None
    start_url: str = ""
    health_check_on_startup: bool = True

    # Logging
    log_level: str = "INFO"
    debug_log_file: str = ""
    debug_log_max_bytes: int = 10 * 1024 * 1024  # 10MB default
    debug_log_backup_count: int = 5

    def __post_init__(self):
        """Validate values that would otherwise fail deep inside a batch."""
        if self.caption_mode not in CAPTION_MODES:
            raise ValueError(f"caption_mode must be one of {CAPTION_MODES}, got {self.caption_mode!r}")

        for name in (
            "embedding_dimensions",
            "caption_max_width",
            "caption_timeout_seconds",
            "caption_max_concurrency",
            "max_concurrency",
            "max_pages",
            "rrf_k",
            "knn_k",
            "lexical_size",
            "render_width",
            "render_height",
            "page_target_width",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        if self.caption_max_retries < 0:
            raise ValueError(f"caption_max_retries must be >= 0, got {self.caption_max_retries}")
        if self.knn_num_candidates < self.knn_k:
            raise ValueError(
                f"knn_num_candidates ({self.knn_num_candidates}) must be >= knn_k ({self.knn_k})"
            )

    @classmethod
    def from_env(cls, env_prefix: str = "", **overrides) -> "RAGConfig":
        """Create config from environment variables with optional prefix.

        Args:
            env_prefix: Prefix for environment variables (e.g., "RAG_")
            **overrides: Explicit values that win over the environment (e.g. CLI options)

        Returns:
            RAGConfig instance populated from environment
        """
        from dotenv import load_dotenv

        load_dotenv()

        # Helper to get env var with prefix
        def get_env(name: str) -> str | None:
            # Try with prefix first, then without
            prefixed = os.getenv(f"{env_prefix}{name}", None)
            if prefixed is not None:
                return prefixed
            return os.getenv(name, None)

        def get_str(name: str, default: str) -> str:
            value = get_env(name)
            return value if value is not None else default

        def get_int(name: str, default: int) -> int:
            # Only positive integers override the default
            value = get_env(name)
            try:
                parsed = int(value) if value is not None else 0
            except ValueError:
                return default
            return parsed if parsed > 0 else default

        def get_float(name: str, default: float) -> float:
            value = get_env(name)
            try:
                parsed = float(value) if value is not None else 0.0
            except ValueError:
                return default
            return parsed if parsed > 0 else default

        def get_bool(name: str, default: bool) -> bool:
            value = get_env(name)
            if value is None or value.strip() == "":
                return default
            return value.strip().lower() in ("true", "1", "yes")

        values = {
            "es_url": get_str("ES_URL", cls.es_url),
            "index_name": get_str("ES_INDEX", cls.index_name),
            "es_api_key": get_str("ES_API_KEY", cls.es_api_key),
            "embedding_dimensions": get_int("EMBEDDING_DIMENSIONS", cls.embedding_dimensions),
            "index_analyzer": get_str("INDEX_ANALYZER", cls.index_analyzer),
            "openai_api_key": get_str("OPENAI_API_KEY", cls.openai_api_key),
            "openai_base_url": get_env("OPENAI_BASE_URL") or None,
            "embedding_model": get_str("EMBEDDING_MODEL", cls.embedding_model),
            "chat_model": get_str("CHAT_MODEL", cls.chat_model),
            "vision_model": get_str("VISION_MODEL", cls.vision_model),
            "image_captions": get_bool("INDEX_IMAGE_CAPTIONS", cls.image_captions),
            "render_pages": get_bool("INDEX_RENDER_PAGES", cls.render_pages),
            "caption_mode": get_str("CAPTION_MODE", cls.caption_mode).strip().lower(),
            "text_min_chars": get_int("TEXT_MIN_CHARS", cls.text_min_chars),
            "caption_max_width": get_int("CAPTION_MAX_WIDTH", cls.caption_max_width),
            "caption_timeout_seconds": get_float("CAPTION_TIMEOUT_SECONDS", cls.caption_timeout_seconds),
            "caption_max_concurrency": get_int("CAPTION_MAX_CONCURRENCY", cls.caption_max_concurrency),
            "caption_max_retries": get_int("CAPTION_MAX_RETRIES", cls.caption_max_retries),
            "caption_language": get_str("CAPTION_LANGUAGE", cls.caption_language),
            "crawl_caption_max_images": get_int("CRAWL_CAPTION_MAX_IMAGES", cls.crawl_caption_max_images),
            "render_width": get_int("OCR_RENDER_WIDTH", cls.render_width),
            "render_height": get_int("OCR_RENDER_HEIGHT", cls.render_height),
            "page_target_width": get_int("PAGE_TARGET_WIDTH", cls.page_target_width),
            "max_concurrency": get_int("MAX_CONCURRENCY", cls.max_concurrency),
            "max_pages": get_int("MAX_PAGES", cls.max_pages),
            "request_timeout": get_float("REQUEST_TIMEOUT", cls.request_timeout),
            "show_progress": get_bool("SHOW_PROGRESS", cls.show_progress),
            "folder": get_str("INDEXER_FOLDER", cls.folder),
            "pattern": get_str("INDEXER_PATTERN", cls.pattern),
            "recursive": get_bool("INDEXER_RECURSIVE", cls.recursive),
            "site": get_env("INDEXER_SITE") or None,
            "start_url": get_str("CRAWLER_START_URL", cls.start_url),
            "health_check_on_startup": get_bool("HEALTH_CHECK_ON_STARTUP", cls.health_check_on_startup),
            "log_level": get_str("LOG_LEVEL", cls.log_level).upper(),
            "debug_log_file": get_str("DEBUG_LOG_FILE", cls.debug_log_file),
            "debug_log_max_bytes": get_int("DEBUG_LOG_MAX_BYTES", cls.debug_log_max_bytes),
            "debug_log_backup_count": get_int("DEBUG_LOG_BACKUP_COUNT", cls.debug_log_backup_count),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
