"""
Site statistics

One aggregation over published posts feeds every public counter on the site
(home page, author pages, category pages) so the numbers always agree. The
result is cached for a minute.
"""

import logging
import math
from typing import Optional

from pymongo.database import Database

from cache import TTLCache
from database import now_utc, serialize, to_object_id

logger = logging.getLogger(__name__)

STATS_TTL = 60
_UNIFIED_KEY = "unified"

stats_cache = TTLCache()


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _later(current, candidate):
    if candidate is None:
        return current
    if current is None or candidate > current:
        return candidate
    return current


def _accumulate(bucket: dict, post: dict) -> None:
    bucket["post_count"] += 1
    bucket["total_views"] += post.get("views", 0) or 0
    bucket["total_likes"] += len(post.get("likes") or [])
    bucket["latest_post"] = _later(bucket["latest_post"], post.get("published_at"))


def get_unified_stats(db: Database) -> dict:
    cached = stats_cache.get(_UNIFIED_KEY)
    if cached is not None:
        return cached

    published = list(
        db["post"].find(
            {"status": "published"},
            {"author_id": 1, "category_id": 1, "views": 1, "likes": 1, "published_at": 1},
        )
    )
    author_ids = {p.get("author_id") for p in published if p.get("author_id")}
    category_ids = {p.get("category_id") for p in published if p.get("category_id")}
    authors = {
        u["_id"]: u
        for u in db["user"].find({"_id": {"$in": list(author_ids)}}, {"name": 1, "username": 1})
    }
    categories = {
        c["_id"]: c
        for c in db["category"].find({"_id": {"$in": list(category_ids)}}, {"name": 1, "slug": 1})
    }

    valid = [p for p in published if p.get("author_id") in authors and p.get("category_id") in categories]

    author_stats = {}
    category_stats = {}
    for post in valid:
        author = authors[post["author_id"]]
        key = str(author["_id"])
        if key not in author_stats:
            author_stats[key] = {
                "author_id": key,
                "name": author.get("name"),
                "username": author.get("username"),
                "post_count": 0,
                "total_views": 0,
                "total_likes": 0,
                "latest_post": None,
            }
        _accumulate(author_stats[key], post)

        category = categories[post["category_id"]]
        key = str(category["_id"])
        if key not in category_stats:
            category_stats[key] = {
                "category_id": key,
                "name": category.get("name"),
                "slug": category.get("slug"),
                "post_count": 0,
                "total_views": 0,
                "total_likes": 0,
                "latest_post": None,
            }
        _accumulate(category_stats[key], post)

    totals = {
        "total_posts": len(valid),
        "total_views": sum(p.get("views", 0) or 0 for p in valid),
        "total_likes": sum(len(p.get("likes") or []) for p in valid),
        "active_authors": len(author_stats),
        "active_categories": len(category_stats),
    }
    totals["avg_posts_per_author"] = (
        round_half_up(totals["total_posts"] / totals["active_authors"]) if totals["active_authors"] else 0
    )
    totals["avg_posts_per_category"] = (
        round_half_up(totals["total_posts"] / totals["active_categories"]) if totals["active_categories"] else 0
    )

    result = {
        "stats": totals,
        "author_stats": author_stats,
        "category_stats": category_stats,
        "data_integrity": {
            "total_published_posts": len(published),
            "valid_posts": len(valid),
            "posts_without_author": sum(1 for p in published if p.get("author_id") not in authors),
            "posts_without_category": sum(1 for p in published if p.get("category_id") not in categories),
            "has_issues": len(published) != len(valid),
        },
        "cached_at": now_utc().isoformat(),
    }
    result = serialize(result)
    stats_cache.set(_UNIFIED_KEY, result, STATS_TTL)
    return result


def get_author_stats(db: Database, identifier: str) -> Optional[dict]:
    author_stats = get_unified_stats(db)["author_stats"]
    if identifier in author_stats:
        return author_stats[identifier]
    return next((s for s in author_stats.values() if s["username"] == identifier), None)


def get_category_stats(db: Database, identifier: str) -> Optional[dict]:
    category_stats = get_unified_stats(db)["category_stats"]
    if identifier in category_stats:
        return category_stats[identifier]
    return next((s for s in category_stats.values() if s["slug"] == identifier), None)


def clear_stats_cache() -> None:
    stats_cache.clear()


def get_admin_stats(db: Database) -> dict:
    users = db["user"]
    posts = db["post"]

    total_views = 0
    total_likes = 0
    total_comments = 0
    for post in posts.find({}, {"views": 1, "likes": 1, "comments": 1}):
        total_views += post.get("views", 0) or 0
        total_likes += len(post.get("likes") or [])
        total_comments += len(post.get("comments") or [])
    total_posts = posts.count_documents({})

    return {
        "users": {
            "total": users.count_documents({}),
            "admins": users.count_documents({"role": "admin"}),
            "authors": users.count_documents({"role": "author"}),
            "active": users.count_documents({"is_active": True}),
            "inactive": users.count_documents({"is_active": False}),
        },
        "posts": {
            "total": total_posts,
            "published": posts.count_documents({"status": "published"}),
            "pending": posts.count_documents({"status": "pending_review"}),
            "draft": posts.count_documents({"status": "draft"}),
            "rejected": posts.count_documents({"status": "rejected"}),
        },
        "engagement": {
            "total_views": total_views,
            "total_likes": total_likes,
            "total_comments": total_comments,
            "avg_views_per_post": round_half_up(total_views / total_posts) if total_posts else 0,
            "engagement_rate": round_half_up(total_likes / total_views * 100) if total_views else 0,
        },
        "categories": {
            "total": db["category"].count_documents({}),
            "active": db["category"].count_documents({"is_active": True}),
        },
    }


def update_user_stats(db: Database, user_id) -> Optional[dict]:
    """Recompute the denormalized counters stored on a user document."""
    user_id = to_object_id(user_id)
    user = db["user"].find_one({"_id": user_id}, {"followers": 1, "following": 1})
    if not user:
        return None

    published = list(
        db["post"].find({"author_id": user_id, "status": "published"}, {"views": 1, "likes": 1})
    )
    user_stats = {
        "total_posts": len(published),
        "total_views": sum(p.get("views", 0) or 0 for p in published),
        "total_likes": sum(len(p.get("likes") or []) for p in published),
        "followers_count": len(user.get("followers") or []),
        "following_count": len(user.get("following") or []),
    }
    db["user"].update_one({"_id": user_id}, {"$set": {"stats": user_stats, "updated_at": now_utc()}})
    logger.debug("Updated stats for user %s", user_id)
    return user_stats
