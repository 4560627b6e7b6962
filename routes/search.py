import re
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pymongo import DESCENDING
from pymongo.database import Database

from database import get_db, serialize
from routes.common import approved_comment_count, category_summary, public_user, user_summary

router = APIRouter(prefix="/api/search", tags=["search"])


@router.get("")
async def search(
    q: str = "",
    type: Literal["all", "posts", "categories", "authors"] = "all",
    limit: int = Query(10, ge=1, le=50),
    db: Database = Depends(get_db),
):
    q = q.strip()
    results = {"posts": [], "categories": [], "authors": []}
    if not q:
        return {"query": q, "results": results, "total": 0}

    pattern = {"$regex": re.escape(q), "$options": "i"}

    if type in ("all", "posts"):
        posts = list(
            db["post"]
            .find(
                {
                    "status": "published",
                    "$or": [{"title": pattern}, {"excerpt": pattern}, {"content": pattern}, {"tags": pattern}],
                }
            )
            .sort("published_at", DESCENDING)
            .limit(limit)
        )
        authors = {u["_id"]: u for u in db["user"].find({"_id": {"$in": [p["author_id"] for p in posts]}})}
        categories = {
            c["_id"]: c for c in db["category"].find({"_id": {"$in": [p.get("category_id") for p in posts]}})
        }
        for post in posts:
            results["posts"].append(
                {
                    "id": str(post["_id"]),
                    "title": post["title"],
                    "slug": post["slug"],
                    "excerpt": post.get("excerpt"),
                    "featured_image_url": post.get("featured_image_url"),
                    "published_at": serialize(post.get("published_at")),
                    "reading_time": post.get("reading_time"),
                    "views": post.get("views", 0),
                    "like_count": len(post.get("likes") or []),
                    "comment_count": approved_comment_count(post),
                    "author": user_summary(authors.get(post["author_id"])),
                    "category": category_summary(categories.get(post.get("category_id"))),
                }
            )

    if type in ("all", "categories"):
        categories = db["category"].find(
            {"is_active": True, "$or": [{"name": pattern}, {"description": pattern}]}
        ).limit(limit)
        results["categories"] = serialize(list(categories))

    if type in ("all", "authors"):
        authors = db["user"].find(
            {
                "is_active": True,
                "role": {"$in": ["author", "admin"]},
                "$or": [{"name": pattern}, {"bio": pattern}, {"username": pattern}],
            }
        ).limit(limit)
        results["authors"] = [public_user(a, include_email=False) for a in authors]

    total = sum(len(v) for v in results.values())
    return {"query": q, "results": results, "total": total}
