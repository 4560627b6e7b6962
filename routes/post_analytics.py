"""
Post analytics

Views, likes and comments are counted per post per UTC day in the
"postanalytics" collection, together with where readers came from and what
device they used. Authors read their own numbers; admins read everyone's,
summed per day, per post or per author.
"""

import logging
from datetime import timedelta
from typing import Iterable, Literal, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pymongo import ASCENDING
from pymongo.database import Database

import settings
from database import get_db, now_utc, serialize
from ratelimit import client_id
from routes.analytics import parse_user_agent
from routes.common import find_user, get_post_or_404, is_owner, user_summary
from schemas import PostAnalytics
from security import get_current_user, is_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["analytics"])

SEARCH_HOSTS = ("google.", "bing.", "duckduckgo.", "yahoo.", "yandex.", "baidu.")
SOCIAL_HOSTS = (
    "facebook.", "twitter.", "t.co", "x.com", "linkedin.", "instagram.", "reddit.", "pinterest.", "whatsapp.",
)
DEVICES = ("desktop", "mobile", "tablet")


def day_key(moment=None) -> str:
    return (moment or now_utc()).strftime("%Y-%m-%d")


def traffic_source(referrer: Optional[str]) -> str:
    host = urlparse(referrer).netloc.lower() if referrer else ""
    if not host or host == urlparse(settings.SITE_URL).netloc.lower():
        return "direct"
    if any(h in host for h in SEARCH_HOSTS):
        return "search"
    if any(h in host for h in SOCIAL_HOSTS):
        return "social"
    return "referral"


def record_post_activity(db: Database, post: dict, inc: dict) -> None:
    """Add `inc` (dotted counter paths) to today's document for `post`, creating it if needed."""
    day = day_key()
    roots = {key.split(".")[0] for key in inc}
    fresh = PostAnalytics(post_id=post["_id"], date=day).model_dump(exclude=roots)
    fresh["created_at"] = now_utc()
    db["postanalytics"].update_one(
        {"post_id": post["_id"], "date": day},
        {"$inc": inc, "$setOnInsert": fresh, "$set": {"updated_at": now_utc()}},
        upsert=True,
    )


def record_post_view(db: Database, post: dict, request: Request, viewer: Optional[dict] = None) -> None:
    """Count one view of `post`; the first view of the day by a visitor is also unique."""
    device = parse_user_agent(request.headers.get("user-agent"))["device_type"]
    inc = {"views.total": 1, f"sources.{traffic_source(request.headers.get('referer'))}": 1}
    if device in DEVICES:
        inc[f"devices.{device}"] = 1
    record_post_activity(db, post, inc)

    visitor = str(viewer["_id"]) if viewer else client_id(request)
    db["postanalytics"].update_one(
        {"post_id": post["_id"], "date": day_key(), "visitors": {"$ne": visitor}},
        {"$addToSet": {"visitors": visitor}, "$inc": {"views.unique": 1}},
    )


def _totals(docs: Iterable[dict]) -> dict:
    totals = {
        "total_views": 0,
        "unique_views": 0,
        "total_likes": 0,
        "total_comments": 0,
        "sources": dict.fromkeys(("direct", "search", "social", "referral"), 0),
        "devices": dict.fromkeys(DEVICES, 0),
    }
    for doc in docs:
        views = doc.get("views") or {}
        totals["total_views"] += views.get("total", 0)
        totals["unique_views"] += views.get("unique", 0)
        totals["total_likes"] += doc.get("likes", 0)
        totals["total_comments"] += doc.get("comments", 0)
        for group in ("sources", "devices"):
            for key, count in (doc.get(group) or {}).items():
                if key in totals[group]:
                    totals[group][key] += count
    return totals


def daily_trend(docs: Iterable[dict]) -> list:
    days = {}
    for doc in docs:
        day = days.setdefault(
            doc["date"], {"date": doc["date"], "views": 0, "unique_views": 0, "likes": 0, "comments": 0}
        )
        views = doc.get("views") or {}
        day["views"] += views.get("total", 0)
        day["unique_views"] += views.get("unique", 0)
        day["likes"] += doc.get("likes", 0)
        day["comments"] += doc.get("comments", 0)
    return [days[key] for key in sorted(days)]


def _since(days: int) -> str:
    # inclusive of today, so days=1 means today only
    return day_key(now_utc() - timedelta(days=days - 1))


def _period_docs(db: Database, days: int, post_ids: Optional[list] = None) -> list:
    query = {"date": {"$gte": _since(days)}}
    if post_ids is not None:
        query["post_id"] = {"$in": post_ids}
    return list(db["postanalytics"].find(query, {"visitors": 0}).sort("date", ASCENDING))


@router.get("/posts/{post_id}/analytics")
async def post_analytics(
    post_id: str,
    days: int = Query(30, ge=1, le=365),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    if not (is_owner(user, post) or is_admin(user)):
        raise HTTPException(status_code=403, detail="Access denied")

    docs = _period_docs(db, days, [post["_id"]])
    analytics = _totals(docs)
    analytics["daily_data"] = daily_trend(docs)
    return {
        "analytics": analytics,
        "post": serialize(
            {"title": post["title"], "slug": post["slug"], "published_at": post.get("published_at")}
        ),
        "period": f"Last {days} days",
    }


@router.get("/analytics/dashboard")
async def dashboard(
    days: int = Query(30, ge=1, le=365),
    action: Literal["dashboard", "top-posts", "authors"] = "dashboard",
    limit: int = Query(10, ge=1, le=50),
    author: Optional[str] = None,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Site-wide numbers for admins, own posts only for authors.

    action=top-posts ranks posts by views; action=authors gives each author's
    totals and daily view trend. Admins may narrow everything to one `author`.
    """
    post_query = {}
    if not is_admin(user):
        post_query["author_id"] = user["_id"]
    elif author:
        target = find_user(db, author)
        if not target:
            raise HTTPException(status_code=404, detail="User not found")
        post_query["author_id"] = target["_id"]

    posts = {p["_id"]: p for p in db["post"].find(post_query, {"title": 1, "slug": 1, "author_id": 1})}
    docs = _period_docs(db, days, list(posts))
    period = f"Last {days} days"

    if action == "top-posts":
        per_post = {}
        for doc in docs:
            per_post.setdefault(doc["post_id"], []).append(doc)
        ranked = sorted(per_post.items(), key=lambda item: _totals(item[1])["total_views"], reverse=True)
        top = []
        for post_id, post_docs in ranked[:limit]:
            post = posts[post_id]
            metrics = _totals(post_docs)
            metrics.pop("sources")
            metrics.pop("devices")
            top.append(
                {
                    "post": {"id": str(post_id), "title": post["title"], "slug": post["slug"]},
                    "metrics": metrics,
                }
            )
        return {"top_posts": top, "period": period}

    if action == "authors":
        per_author = {}
        for doc in docs:
            per_author.setdefault(posts[doc["post_id"]].get("author_id"), []).append(doc)
        people = {u["_id"]: u for u in db["user"].find({"_id": {"$in": list(per_author)}})}
        authors = []
        for author_id, author_docs in per_author.items():
            totals = _totals(author_docs)
            authors.append(
                {
                    "author": user_summary(people.get(author_id)),
                    "total_views": totals["total_views"],
                    "unique_views": totals["unique_views"],
                    "total_likes": totals["total_likes"],
                    "total_comments": totals["total_comments"],
                    "trend": [{"date": d["date"], "views": d["views"]} for d in daily_trend(author_docs)],
                }
            )
        authors.sort(key=lambda a: a["total_views"], reverse=True)
        return {"authors": authors, "period": period}

    return {"summary": _totals(docs), "daily_trend": daily_trend(docs), "period": period}
