import argparse
import asyncio

from dotenv import load_dotenv
load_dotenv()

from rca_analyzer.config import settings
from rca_analyzer.confluence.client import ConfluenceClient
from rca_analyzer.db import MemoryStore, RcaStore, AsyncSessionLocal, async_engine, init_models
from rca_analyzer.db.models import SyncType
from rca_analyzer.embeddings.registry import create_embedding_provider
from rca_analyzer.ingestion.pipeline import PagePipeline
from rca_analyzer.ingestion.sync import SyncOrchestrator
from rca_analyzer.main import configure_logging


def parse_args():
    parser = argparse.ArgumentParser(description="Sync RCA pages from Confluence into the index.")
    parser.add_argument(
        "spaces",
        nargs="*",
        help="Space keys to crawl (default: CONFLUENCE_SPACES)",
    )
    parser.add_argument(
        "--incremental",
        action="store_true",
        help="Only pages modified since the previous finished run",
    )
    parser.add_argument("--tags", default=None, help="Comma-separated labels to filter on")
    parser.add_argument("--limit", type=int, default=None, help="Maximum number of pages")
    return parser.parse_args()


async def main():
    args = parse_args()
    configure_logging()

    spaces = args.spaces or settings.spaces_list
    if not spaces:
        print("No spaces given and CONFLUENCE_SPACES is empty.")
        return 1

    tags = settings.tags_list if args.tags is None else [t.strip() for t in args.tags.split(",") if t.strip()]

    if settings.store_backend == "postgres":
        await init_models()
        store = RcaStore(AsyncSessionLocal)
    else:
        store = MemoryStore()

    source = ConfluenceClient()
    pipeline = PagePipeline(store, source, create_embedding_provider(settings))
    orchestrator = SyncOrchestrator(store, source, pipeline)

    sync_type = SyncType.INCREMENTAL if args.incremental else SyncType.FULL
    print(f"Running {sync_type.value} sync over {', '.join(spaces)}...")

    try:
        run = await orchestrator.run_sync(spaces, sync_type, tags, args.limit)
    finally:
        await async_engine.dispose()

    print(f"Sync {run.id}: {run.status}")
    print(f"  fetched:   {run.pages_fetched}")
    print(f"  processed: {run.pages_processed}")
    print(f"  failed:    {run.pages_failed}")
    if run.error_message:
        print(f"  error:     {run.error_message}")

    return 0 if run.status == "COMPLETED" else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
