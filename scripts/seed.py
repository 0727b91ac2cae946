"""Database seeder for local development."""
import argparse
import asyncio
import random
import time
import uuid
from datetime import datetime, timedelta, timezone

from pulsereader.database import Base, async_session, engine
from pulsereader.models import Article, Profile, RssSource, Sentiment, Topic

SOURCES = [
    ("BBC News", "https://feeds.bbci.co.uk/news/rss.xml"),
    ("The Guardian World", "https://www.theguardian.com/world/rss"),
    ("Ars Technica", "https://feeds.arstechnica.com/arstechnica/index"),
    ("NASA Breaking News", "https://www.nasa.gov/rss/dyn/breaking_news.rss"),
]

TOPICS = ["climate", "technology", "politics", "space", "health", "economy",
          "sports", "science", "energy", "education"]

HEADLINES = [
    "New study on {topic} surprises researchers",
    "Government announces plan for {topic}",
    "Experts warn about the future of {topic}",
    "Record investment in {topic} this year",
    "Local communities debate {topic} policy",
]

# Fixed so the demo profile can be used with the X-User-Id header.
DEMO_USER_ID = uuid.UUID("00000000-0000-4000-8000-000000000001")


async def seed(small: bool = False):
    num_articles = 50 if small else 2000
    print(f"Seeding: {len(SOURCES)} sources, {len(TOPICS)} topics, {num_articles} articles")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        sources = [RssSource(name=name, url=url) for name, url in SOURCES]
        session.add_all(sources)
        topics = [Topic(name=name) for name in TOPICS]
        session.add_all(topics)
        await session.flush()
        print(f"  Created {len(sources)} sources and {len(topics)} topics")

        batch_size = 500
        sentiments = [Sentiment.POSITIVE, Sentiment.NEUTRAL, Sentiment.NEGATIVE, None]
        for batch_start in range(0, num_articles, batch_size):
            batch_end = min(batch_start + batch_size, num_articles)
            for i in range(batch_start, batch_end):
                topic_sample = random.sample(topics, k=random.randint(1, 3))
                title = random.choice(HEADLINES).format(topic=topic_sample[0].name)
                article = Article(
                    source_id=random.choice(sources).id,
                    title=f"{title} ({i})",
                    description=f"Coverage of {', '.join(t.name for t in topic_sample)}. " * 3,
                    link=f"https://example.com/news/{i}",
                    publication_date=datetime.now(timezone.utc) - timedelta(hours=random.randint(0, 24 * 90)),
                    # Roughly a quarter stay unanalyzed for the analysis job.
                    sentiment=random.choice(sentiments),
                )
                article.topics.extend(topic_sample)
                session.add(article)
            await session.flush()
            print(f"  Batch {batch_start}-{batch_end}: articles created")

        session.add(Profile(
            user_id=DEMO_USER_ID,
            mood=Sentiment.POSITIVE,
            blocklist=["war", "crime"],
        ))
        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Demo profile user id: {DEMO_USER_ID}")


def main():
    parser = argparse.ArgumentParser(description="Seed the PulseReader database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (50 articles)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
