"""Crawler-facing documents: RSS, Atom, sitemap and robots.txt."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse, Response
from pymongo import DESCENDING
from pymongo.database import Database

import seo
from database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["feeds"])

FEED_SIZE = 20
FEED_CACHE_HEADERS = {"Cache-Control": "public, s-maxage=1800, stale-while-revalidate=3600"}


def latest_posts(db: Database, limit: int = FEED_SIZE) -> list:
    posts = list(db["post"].find({"status": "published"}).sort("published_at", DESCENDING).limit(limit))
    authors = {u["_id"]: u for u in db["user"].find({"_id": {"$in": [p["author_id"] for p in posts]}})}
    categories = {
        c["_id"]: c for c in db["category"].find({"_id": {"$in": [p.get("category_id") for p in posts]}})
    }
    for post in posts:
        post["author"] = authors.get(post["author_id"])
        post["category"] = categories.get(post.get("category_id"))
    return posts


@router.get("/api/feed/rss")
@router.get("/rss.xml")
async def rss(db: Database = Depends(get_db)):
    return Response(
        content=seo.rss_feed(latest_posts(db)),
        media_type="application/rss+xml; charset=utf-8",
        headers=FEED_CACHE_HEADERS,
    )


@router.get("/api/feed/atom")
async def atom(db: Database = Depends(get_db)):
    return Response(
        content=seo.atom_feed(latest_posts(db)),
        media_type="application/atom+xml; charset=utf-8",
        headers=FEED_CACHE_HEADERS,
    )


@router.get("/sitemap.xml")
async def sitemap(db: Database = Depends(get_db)):
    posts = list(
        db["post"].find({"status": "published"}, {"slug": 1, "updated_at": 1, "published_at": 1, "author_id": 1})
    )
    categories = list(db["category"].find({"is_active": True}, {"slug": 1, "updated_at": 1}))
    author_ids = list({p["author_id"] for p in posts})
    authors = list(
        db["user"].find({"_id": {"$in": author_ids}, "is_active": True}, {"username": 1, "updated_at": 1})
    )
    logger.debug("Sitemap: %d posts, %d categories, %d authors", len(posts), len(categories), len(authors))
    return Response(content=seo.sitemap(posts, categories, authors), media_type="application/xml")


@router.get("/robots.txt", response_class=PlainTextResponse)
async def robots():
    return seo.robots_txt()
