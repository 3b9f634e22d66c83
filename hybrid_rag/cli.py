"""Command line entry point.

Commands:
    index      Index a folder of documents into the persistent store
    siteindex  Crawl a site (and its linked PDFs) into the persistent store
    search     Hybrid search against the persistent store
    ask        Crawl a site into memory and answer a question from it
"""

import asyncio
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import click
import openai

from .backends import OpenAIChatGenerator, OpenAIEmbedder, check_embedding_health
from .config import RAGConfig
from .errors import HybridRagError
from .ingest import FileIndexer, ImageCaptioner, SiteIndexer
from .rag import ElasticsearchStore, HttpFetcher, LiveSiteQA, SiteCrawler, store_retriever

logger = logging.getLogger(__name__)


def configure_logging(config: RAGConfig):
    """Console logging at config.log_level, plus a rotating debug file when DEBUG_LOG_FILE is set."""
    root = logging.getLogger("hybrid_rag")
    root.setLevel(logging.DEBUG if config.debug_log_file else config.log_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler()
    console.setLevel(config.log_level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if config.debug_log_file:
        log_file = Path(config.debug_log_file)
        # Use RotatingFileHandler for automatic log rotation
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=config.debug_log_max_bytes,
            backupCount=config.debug_log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

        max_mb = config.debug_log_max_bytes / (1024 * 1024)
        logger.info(f"Debug logging enabled: {log_file.absolute()} ({max_mb:.1f}MB max, {config.debug_log_backup_count} backups)")


async def ensure_embedding_service(config: RAGConfig, embedder: OpenAIEmbedder):
    """Abort when the embedding service is unreachable (skipped when HEALTH_CHECK_ON_STARTUP=false)."""
    if not config.health_check_on_startup:
        return
    healthy, message = await check_embedding_health(embedder)
    if not healthy:
        raise click.ClickException(f"{message}\nTo disable this check, set HEALTH_CHECK_ON_STARTUP=false")
    logger.info(f"[EMBED] {message}")


def run(coro):
    """Run a command coroutine, turning library errors into a clean CLI failure."""
    try:
        return asyncio.run(coro)
    except HybridRagError as e:
        raise click.ClickException(str(e)) from e
    except openai.OpenAIError as e:
        raise click.ClickException(f"Provider error: {e}") from e


@click.group()
@click.option("--env-prefix", default="", help="Prefix for environment variables (e.g. RAG_).")
@click.option("--log-level", default=None, help="Console log level (overrides LOG_LEVEL).")
@click.pass_context
def main(ctx: click.Context, env_prefix: str, log_level: str | None):
    """Hybrid (lexical + vector) retrieval over documents and web sites."""
    try:
        config = RAGConfig.from_env(env_prefix, log_level=log_level.upper() if log_level else None)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e
    configure_logging(config)
    ctx.obj = config


@main.command()
@click.option("--folder", default=None, help="Folder to index (overrides INDEXER_FOLDER).")
@click.option("--pattern", default=None, help="Glob patterns separated by ';', ',' or spaces.")
@click.option("--recursive/--no-recursive", default=None, help="Search sub-folders.")
@click.option("--site", default=None, help="Site tag written on every document.")
@click.option("--max-concurrency", type=int, default=None, help="Files processed concurrently.")
@click.option("--delete-index-first", is_flag=True, help="Delete and recreate the index before indexing.")
@click.pass_obj
def index(config: RAGConfig, folder, pattern, recursive, site, max_concurrency, delete_index_first):
    """Index a folder of PDF, DOCX, HTML and text files."""
    folder = folder or config.folder
    if not folder:
        raise click.ClickException("No folder given (use --folder or INDEXER_FOLDER)")
    if not Path(folder).is_dir():
        raise click.ClickException(f"Folder not found: {folder}")

    async def _run():
        embedder = OpenAIEmbedder(config)
        await ensure_embedding_service(config, embedder)
        indexer = FileIndexer(config, ImageCaptioner(config))

        async with ElasticsearchStore(config) as store:
            if delete_index_first:
                await store.delete_index(config.index_name)
            await store.ensure_index(config.index_name)
            return await indexer.index_folder(
                store,
                embedder,
                config.index_name,
                folder,
                pattern or config.pattern,
                config.recursive if recursive is None else recursive,
                site=site or config.site,
                max_concurrency=max_concurrency or config.max_concurrency,
            )

    count = run(_run())
    click.echo(f"Done: {count} file(s) processed.")


@main.command()
@click.option("--start-url", default=None, help="Start URL (overrides CRAWLER_START_URL).")
@click.option("--site", default=None, help="Site tag written on every document.")
@click.option("--max-pages", type=int, default=None, help="Crawl page budget.")
@click.option("--no-sitemap", is_flag=True, help="Do not seed the crawl from sitemap.xml.")
@click.pass_obj
def siteindex(config: RAGConfig, start_url, site, max_pages, no_sitemap):
    """Crawl a site and index its pages and linked PDFs."""
    start_url = start_url or config.start_url
    if not start_url:
        raise click.ClickException("No start URL given (use --start-url or CRAWLER_START_URL)")

    async def _run():
        embedder = OpenAIEmbedder(config)
        await ensure_embedding_service(config, embedder)

        async with ElasticsearchStore(config) as store, HttpFetcher(config.user_agent, config.request_timeout) as fetcher:
            await store.ensure_index(config.index_name)
            indexer = SiteIndexer(config, SiteCrawler(config, fetcher, ImageCaptioner(config)))
            return await indexer.index_site(
                store,
                embedder,
                config.index_name,
                start_url,
                site=site or config.site,
                max_pages=max_pages,
                use_sitemap=not no_sitemap,
            )

    ok, failed = run(_run())
    click.echo(f"Done. OK={ok}, FAIL={failed}")


@main.command()
@click.argument("query")
@click.option("--site", default=None, help="Restrict results to one site tag.")
@click.option("--take", type=int, default=8, show_default=True, help="Number of results.")
@click.pass_obj
def search(config: RAGConfig, query, site, take):
    """Hybrid search against the persistent index."""

    async def _run():
        embedder = OpenAIEmbedder(config)
        async with ElasticsearchStore(config) as store:
            retriever = store_retriever(store, embedder, config)
            return await retriever.retrieve(query, site=site, take=take)

    result = run(_run())
    if result.is_empty():
        click.echo(config.no_answer_text)
        return
    for i, source in enumerate(result.sources, start=1):
        page = f" (page {source.page})" if source.page is not None else ""
        click.echo(f"[{i}] {source.title} — {source.source_path or source.id}{page}  score={source.score:.4f}")
        click.echo(f"    {source.snippet}\n")


@main.command()
@click.argument("question")
@click.option("--start-url", default=None, help="Site to crawl (overrides CRAWLER_START_URL).")
@click.option("--max-pages", type=int, default=None, help="Crawl page budget.")
@click.option("--take", type=int, default=6, show_default=True, help="Context passages used for the answer.")
@click.option("--no-sitemap", is_flag=True, help="Do not seed the crawl from sitemap.xml.")
@click.pass_obj
def ask(config: RAGConfig, question, start_url, max_pages, take, no_sitemap):
    """Crawl a site into memory and answer QUESTION from it."""
    start_url = start_url or config.start_url
    if not start_url:
        raise click.ClickException("No start URL given (use --start-url or CRAWLER_START_URL)")

    async def _run():
        embedder = OpenAIEmbedder(config)
        await ensure_embedding_service(config, embedder)

        async with HttpFetcher(config.user_agent, config.request_timeout) as fetcher:
            qa = LiveSiteQA(
                config,
                embedder,
                OpenAIChatGenerator(config),
                SiteCrawler(config, fetcher, ImageCaptioner(config)),
            )
            corpus = await qa.build_corpus(start_url, max_pages=max_pages, use_sitemap=not no_sitemap)
            return await qa.ask(question, corpus, take=take)

    click.echo(run(_run()))


if __name__ == "__main__":
    main()
