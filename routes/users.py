import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import DESCENDING
from pymongo.database import Database

import stats
from cache import invalidate_post_caches
from database import get_db, now_utc, pagination, serialize
from notifications import notify
from routes.common import bump_category, find_user, posts_out, public_user, user_summary
from schemas import SocialLinks, UserSettings
from security import get_current_user, get_optional_user, verify_password
from usernames import is_username_available, validate_username

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["users"])


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=60)
    username: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[str] = None
    social_links: Optional[SocialLinks] = None


class UsernameCheck(BaseModel):
    username: str


class DeleteAccountRequest(BaseModel):
    password: str
    confirmation: Optional[str] = None


def _user_or_404(db: Database, identifier: str) -> dict:
    user = find_user(db, identifier)
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=404, detail="Author not found")
    return user


# Own account
@router.get("/users/profile")
async def get_profile(user: dict = Depends(get_current_user)):
    return {"user": public_user(user)}


@router.put("/users/profile")
async def update_profile(
    payload: ProfileUpdate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "username" in changes:
        username = changes["username"].strip().lower()
        valid, error = validate_username(username)
        if not valid:
            raise HTTPException(status_code=400, detail=error)
        if not is_username_available(db, username, user["_id"]):
            raise HTTPException(status_code=409, detail="Username is already taken")
        changes["username"] = username
    if "name" in changes:
        changes["name"] = changes["name"].strip()
    changes["updated_at"] = now_utc()

    db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    stats.clear_stats_cache()
    return {
        "message": "Profile updated successfully",
        "user": public_user(db["user"].find_one({"_id": user["_id"]})),
    }


@router.get("/users/settings")
async def get_settings(user: dict = Depends(get_current_user)):
    return {"settings": UserSettings(**(user.get("settings") or {})).model_dump()}


@router.put("/users/settings")
async def update_settings(
    payload: UserSettings,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"settings": payload.model_dump(), "updated_at": now_utc()}},
    )
    return {"message": "Settings updated successfully", "settings": payload.model_dump()}


@router.delete("/users/delete-account")
async def delete_account(
    payload: DeleteAccountRequest,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Incorrect password")
    if user.get("role") == "admin" and db["user"].count_documents({"role": "admin"}) <= 1:
        raise HTTPException(status_code=400, detail="The last admin account cannot be deleted")

    for post in db["post"].find({"author_id": user["_id"], "status": "published"}, {"category_id": 1}):
        bump_category(db, post.get("category_id"), -1)
    post_ids = [p["_id"] for p in db["post"].find({"author_id": user["_id"]}, {"_id": 1})]
    db["post"].delete_many({"author_id": user["_id"]})
    db["postversion"].delete_many({"post_id": {"$in": post_ids}})
    db["user"].update_many({}, {"$pull": {"followers": user["_id"], "following": user["_id"]}})
    db["post"].update_many({}, {"$pull": {"likes": user["_id"], "saves": user["_id"]}})
    db["notification"].delete_many({"$or": [{"recipient_id": user["_id"]}, {"sender_id": user["_id"]}]})
    db["profileview"].delete_many({"profile_id": user["_id"]})
    db["user"].delete_one({"_id": user["_id"]})

    invalidate_post_caches()
    stats.clear_stats_cache()
    logger.info("Account %s deleted with %d posts", user["_id"], len(post_ids))
    return {"message": "Account deleted successfully", "deleted_posts": len(post_ids)}


@router.get("/users/export")
async def export_data(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    posts = list(db["post"].find({"author_id": user["_id"]}))
    bookmarks = list(db["post"].find({"saves": user["_id"]}, {"title": 1, "slug": 1}))
    return {
        "exported_at": now_utc().isoformat(),
        "user": public_user(user),
        "posts": serialize(posts),
        "bookmarks": serialize(bookmarks),
        "notifications": serialize(list(db["notification"].find({"recipient_id": user["_id"]}))),
    }


@router.post("/users/check-username")
async def check_username(
    payload: UsernameCheck,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    username = payload.username.strip().lower()
    valid, error = validate_username(username)
    if not valid:
        raise HTTPException(status_code=400, detail=error)

    available = is_username_available(db, username, user["_id"] if user else None)
    return {
        "available": available,
        "message": "Username is available" if available else "Username is already taken",
    }


@router.get("/users/dashboard/stats")
async def dashboard_stats(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    posts = list(db["post"].find({"author_id": user["_id"]}, {"status": 1, "views": 1, "likes": 1, "comments": 1}))
    by_status = {s: 0 for s in ("draft", "pending_review", "published", "rejected")}
    for post in posts:
        by_status[post["status"]] = by_status.get(post["status"], 0) + 1
    return {
        "posts": {"total": len(posts), **by_status},
        "total_views": sum(p.get("views", 0) or 0 for p in posts),
        "total_likes": sum(len(p.get("likes") or []) for p in posts),
        "total_comments": sum(len(p.get("comments") or []) for p in posts),
        "followers_count": len(user.get("followers") or []),
        "following_count": len(user.get("following") or []),
    }


@router.get("/users/authors")
async def list_authors(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Database = Depends(get_db),
):
    query = {"is_active": True, "role": {"$in": ["author", "admin"]}}
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}
    total = db["user"].count_documents(query)
    cursor = db["user"].find(query).sort("name", 1).skip((page - 1) * limit).limit(limit)
    return {
        "authors": [public_user(u, include_email=False) for u in cursor],
        "pagination": pagination(page, limit, total),
    }


# Social graph
@router.post("/users/{user_id}/follow")
async def toggle_follow(
    user_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    target = find_user(db, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target["_id"] == user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot follow yourself")

    following = target["_id"] in (user.get("following") or [])
    if following:
        db["user"].update_one({"_id": user["_id"]}, {"$pull": {"following": target["_id"]}})
        db["user"].update_one({"_id": target["_id"]}, {"$pull": {"followers": user["_id"]}})
    else:
        if not (target.get("settings") or {}).get("allow_follow", True):
            raise HTTPException(status_code=403, detail="This user does not accept followers")
        db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"following": target["_id"]}})
        db["user"].update_one({"_id": target["_id"]}, {"$addToSet": {"followers": user["_id"]}})
        notify(
            db, target["_id"], user["_id"], "follow",
            f"{user.get('name')} started following you", link=f"/author/{user.get('username')}",
        )
        # credit the most recent profile visit with the follow
        view = db["profileview"].find_one(
            {"profile_id": target["_id"], "viewer_user_id": user["_id"], "followed_after_view": False},
            sort=[("timestamp", DESCENDING)],
        )
        if view:
            db["profileview"].update_one(
                {"_id": view["_id"]}, {"$set": {"followed_after_view": True, "followed_at": now_utc()}}
            )

    user_stats = stats.update_user_stats(db, target["_id"])
    stats.update_user_stats(db, user["_id"])
    return {
        "is_following": not following,
        "followers_count": user_stats["followers_count"],
        "message": "Unfollowed" if following else "Followed",
    }


@router.get("/users/{user_id}/follow")
async def follow_status(
    user_id: str,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    target = find_user(db, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    return {
        "is_following": bool(user) and target["_id"] in (user.get("following") or []),
        "followers_count": len(target.get("followers") or []),
    }


@router.get("/users/{user_id}/stats")
async def user_stats(user_id: str, db: Database = Depends(get_db)):
    target = _user_or_404(db, user_id)
    summary = stats.get_author_stats(db, str(target["_id"]))
    return {
        "user": user_summary(target),
        "stats": summary
        or {"post_count": 0, "total_views": 0, "total_likes": 0, "latest_post": None},
        "followers_count": len(target.get("followers") or []),
        "following_count": len(target.get("following") or []),
    }


# Public author pages
@router.get("/author/{identifier}")
async def author_profile(
    identifier: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    viewer: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    author = _user_or_404(db, identifier)
    query = {"author_id": author["_id"], "status": "published"}
    total = db["post"].count_documents(query)
    posts = db["post"].find(query).sort("published_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    return {
        "author": public_user(author, include_email=False),
        "stats": stats.get_author_stats(db, str(author["_id"])),
        "posts": posts_out(db, posts, viewer),
        "pagination": pagination(page, limit, total),
        "is_following": bool(viewer) and author["_id"] in (viewer.get("following") or []),
    }


@router.get("/author/{identifier}/followers")
async def author_followers(identifier: str, db: Database = Depends(get_db)):
    author = _user_or_404(db, identifier)
    followers = db["user"].find({"_id": {"$in": author.get("followers") or []}, "is_active": True})
    following = db["user"].find({"_id": {"$in": author.get("following") or []}, "is_active": True})
    return {
        "followers": [user_summary(u) for u in followers],
        "following": [user_summary(u) for u in following],
        "followers_count": len(author.get("followers") or []),
        "following_count": len(author.get("following") or []),
    }


@router.get("/authors/top")
async def top_authors(limit: int = Query(6, ge=1, le=50), db: Database = Depends(get_db)):
    author_stats = stats.get_unified_stats(db)["author_stats"].values()
    ranked = sorted(author_stats, key=lambda s: (s["post_count"], s["total_views"]), reverse=True)[:limit]
    return {"authors": ranked}
