#!/usr/bin/env python3
"""
seed_db.py — Populate MongoDB with the article corpus for local development.

Reads a JSON array of articles (default: ./news_data.json) shaped like:

    {"id": "...", "title": "...", "description": "...", "url": "...",
     "publication_date": "2024-03-01T10:00:00Z", "source_name": "...",
     "category": ["world"], "relevance_score": 0.87,
     "latitude": 51.5, "longitude": -0.12}

and inserts it into `articles` with a GeoJSON `location`, then ensures the
geo / text / lookup indexes. With --simulate-clicks N it also records N
recent clicks on the first article so GET /trending has something to rank.

Usage:
    python scripts/seed_db.py [path/to/news_data.json] [--simulate-clicks 5]

Safe to re-run: articles are only inserted into an empty collection.
"""

import argparse
import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from motor.motor_asyncio import AsyncIOMotorClient

from geonews.core.config import settings
from geonews.core.database import ARTICLES, USER_EVENTS, ensure_indexes
from geonews.services.geo import to_geojson_point

# Ages of the simulated clicks, newest first
CLICK_AGES = [
    timedelta(minutes=5),
    timedelta(minutes=10),
    timedelta(minutes=30),
    timedelta(hours=1),
    timedelta(hours=2),
]


def article_doc(raw: dict) -> dict:
    """JSON record → Mongo document keyed by _id."""
    published = datetime.fromisoformat(raw["publication_date"].replace("Z", "+00:00"))
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)
    return {
        "_id": str(raw["id"]),
        "title": raw["title"],
        "description": raw["description"],
        "url": raw["url"],
        "publication_date": published,
        "source_name": raw["source_name"],
        "category": list(raw.get("category") or []),
        "relevance_score": float(raw["relevance_score"]),
        "latitude": float(raw["latitude"]),
        "longitude": float(raw["longitude"]),
        "location": to_geojson_point(raw["latitude"], raw["longitude"]),
    }


def click_docs(article: dict, count: int, now: datetime) -> list[dict]:
    docs = []
    for i in range(count):
        age = CLICK_AGES[i % len(CLICK_AGES)]
        docs.append({
            "_id": str(uuid.uuid4()),
            "event_type": "click",
            "article_id": article["_id"],
            "user_id": f"seed-user-{i}",
            "latitude": article["latitude"],
            "longitude": article["longitude"],
            "location": article["location"],
            "created_at": now - age,
        })
    return docs


async def seed(path: Path, simulate_clicks: int) -> None:
    print("Connecting to MongoDB...")
    client = AsyncIOMotorClient(settings.mongo_uri, tz_aware=True)
    db = client[settings.mongo_db_name]

    try:
        await client.admin.command("ping")
        print("Connected.")

        existing = await db[ARTICLES].count_documents({})
        if existing > 0:
            print(f"articles already has {existing} documents. Skipping article seeding.")
        else:
            raw_articles = json.loads(path.read_text(encoding="utf-8"))
            docs = [article_doc(a) for a in raw_articles]
            print(f"Preparing to seed {len(docs)} articles...")
            if docs:
                result = await db[ARTICLES].insert_many(docs, ordered=False)
                print(f"Inserted {len(result.inserted_ids)} articles.")

        await ensure_indexes(db)
        print("Indexes ensured.")

        if simulate_clicks > 0:
            first = await db[ARTICLES].find_one({}, sort=[("_id", 1)])
            if first is None:
                print("No articles to click on — skipping simulated events.")
            else:
                events = click_docs(first, simulate_clicks, datetime.now(timezone.utc))
                await db[USER_EVENTS].insert_many(events)
                print(f"Inserted {len(events)} simulated clicks on {first['_id']}.")

        print("\nSeed complete! Articles per category:")
        pipeline = [
            {"$unwind": "$category"},
            {"$group": {"_id": "$category", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
        ]
        async for doc in db[ARTICLES].aggregate(pipeline):
            print(f"  {doc['_id']}: {doc['count']} articles")

    finally:
        client.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the GeoNews article corpus")
    parser.add_argument("path", nargs="?", default="news_data.json", type=Path)
    parser.add_argument("--simulate-clicks", type=int, default=0)
    args = parser.parse_args()
    asyncio.run(seed(args.path, args.simulate_clicks))
