"""Analyze stored articles that have no sentiment yet."""
import argparse
import asyncio
import logging
import time
import uuid

from pulsereader.config import settings
from pulsereader.database import async_session
from pulsereader.logging_config import setup_logging
from pulsereader.services import analysis_service, article_service
from pulsereader.services.openrouter_client import OpenRouterClient

logger = logging.getLogger("pulsereader.scripts.analyze_articles")


async def run(limit: int, delay: float, article_ids: list[uuid.UUID]) -> int:
    client = OpenRouterClient()
    start = time.perf_counter()
    try:
        async with async_session() as session:
            if not article_ids:
                pending = await article_service.find_articles_pending_analysis(session, limit=limit)
                article_ids = [uuid.UUID(a["id"]) for a in pending]
            if not article_ids:
                print("No articles pending analysis")
                return 0
            outcomes = await analysis_service.analyze_articles(session, client, article_ids, delay=delay)
    finally:
        await client.close()

    failed = [o for o in outcomes if not o.success]
    elapsed = time.perf_counter() - start
    print(f"\nAnalyzed {len(outcomes)} article(s) in {elapsed:.1f}s")
    print(f"  Succeeded: {len(outcomes) - len(failed)}")
    print(f"  Failed:    {len(failed)}")
    for outcome in failed:
        print(f"    {outcome.article_id}: {outcome.error}")
    return 1 if failed else 0


def main():
    parser = argparse.ArgumentParser(description="Run AI sentiment/topic analysis on pending articles")
    parser.add_argument("--limit", type=int, default=20, help="Maximum pending articles to analyze")
    parser.add_argument(
        "--delay", type=float, default=settings.AI_BATCH_DELAY_SECONDS,
        help="Seconds to wait between articles",
    )
    parser.add_argument("--article-id", type=uuid.UUID, action="append", default=[],
                        help="Analyze this article instead of the pending queue (repeatable)")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args()

    setup_logging(args.log_level)
    raise SystemExit(asyncio.run(run(args.limit, args.delay, args.article_id)))


if __name__ == "__main__":
    main()
