"""Bookmarks and star ratings on posts."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import DESCENDING
from pymongo.database import Database

from database import get_db, now_utc, pagination, serialize
from routes.common import get_post_or_404, posts_out, update_post_array, user_summary
from security import get_current_user, get_optional_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["engagement"])


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)


def average_of(ratings: list) -> float:
    return round(sum(r["rating"] for r in ratings) / len(ratings), 1) if ratings else 0


def _published_or_404(db: Database, post_id: str) -> dict:
    post = get_post_or_404(db, post_id)
    if post["status"] != "published":
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.post("/posts/{post_id}/bookmark")
async def toggle_bookmark(
    post_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = _published_or_404(db, post_id)
    saved = user["_id"] in (post.get("saves") or [])
    if saved:
        db["post"].update_one({"_id": post["_id"]}, {"$pull": {"saves": user["_id"]}})
    else:
        db["post"].update_one({"_id": post["_id"]}, {"$addToSet": {"saves": user["_id"]}})

    save_count = len(db["post"].find_one({"_id": post["_id"]}, {"saves": 1}).get("saves") or [])
    return {
        "message": "Bookmark removed" if saved else "Post bookmarked",
        "is_bookmarked": not saved,
        "save_count": save_count,
    }


@router.get("/posts/{post_id}/bookmark")
async def bookmark_status(
    post_id: str,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    saves = post.get("saves") or []
    return {
        "is_bookmarked": bool(user) and user["_id"] in saves,
        "save_count": len(saves),
    }


@router.get("/users/bookmarks")
async def my_bookmarks(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    query = {"saves": user["_id"], "status": "published"}
    total = db["post"].count_documents(query)
    cursor = (
        db["post"]
        .find(query)
        .sort("published_at", DESCENDING)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return {"posts": posts_out(db, cursor, user), "pagination": pagination(page, limit, total)}


@router.post("/posts/{post_id}/ratings")
async def rate_post(
    post_id: str,
    payload: RatingRequest,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = _published_or_404(db, post_id)

    def apply(ratings):
        ratings[:] = [r for r in ratings if r.get("user_id") != user["_id"]]
        ratings.append({"user_id": user["_id"], "rating": payload.rating, "created_at": now_utc()})
        return average_of(ratings), len(ratings)

    average, count = update_post_array(
        db, post["_id"], "ratings", apply, extra=lambda ratings: {"average_rating": average_of(ratings)}
    )
    return {"message": "Rating saved", "average_rating": average, "rating_count": count}


@router.get("/posts/{post_id}/ratings")
async def list_ratings(
    post_id: str,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    post = _published_or_404(db, post_id)
    ratings = post.get("ratings") or []
    raters = {
        u["_id"]: u
        for u in db["user"].find({"_id": {"$in": [r["user_id"] for r in ratings]}})
    }
    mine = next((r["rating"] for r in ratings if user and r["user_id"] == user["_id"]), None)
    return {
        "ratings": [
            {
                "user": user_summary(raters.get(r["user_id"])),
                "rating": r["rating"],
                "created_at": serialize(r["created_at"]),
            }
            for r in ratings
        ],
        "average_rating": post.get("average_rating", 0),
        "rating_count": len(ratings),
        "my_rating": mine,
    }
