import logging
import re
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr
from pymongo import DESCENDING
from pymongo.database import Database

import settings
from cache import invalidate_post_caches
from database import get_db, now_utc, pagination, serialize, to_object_id
from routes.categories import get_category_or_404
from routes.common import find_user, public_user, user_summary
from security import require_admin
from stats import clear_stats_cache, update_user_stats
from undo import undo_manager
from usernames import validate_username

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class UserUpdate(BaseModel):
    role: Optional[Literal["author", "admin"]] = None
    is_active: Optional[bool] = None


class ReassignRequest(BaseModel):
    from_author_id: str
    to_author_id: str


class MergeRequest(BaseModel):
    source_category_id: str
    target_category_id: str


class AuthorDetails(BaseModel):
    name: Optional[str] = None
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    role: Optional[Literal["author", "admin"]] = None


class AuthorMergeRequest(BaseModel):
    author_ids: List[str]
    primary_author_id: str
    keep_details: Optional[AuthorDetails] = None


def _user_or_404(db: Database, user_id: str) -> dict:
    user = find_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/users")
async def list_users(
    role: Optional[Literal["author", "admin"]] = None,
    status: Optional[Literal["active", "inactive"]] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    query = {}
    if role:
        query["role"] = role
    if status:
        query["is_active"] = status == "active"
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}, {"username": pattern}]

    total = db["user"].count_documents(query)
    users = db["user"].find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    return {
        "users": [public_user(u) for u in users],
        "pagination": pagination(page, limit, total),
        "max_admins": settings.MAX_ADMINS,
    }


@router.patch("/users/{user_id}")
async def update_user(
    user_id: str,
    payload: UserUpdate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    user = _user_or_404(db, user_id)
    changes = {}

    if payload.role and payload.role != user.get("role"):
        if user["_id"] == admin["_id"] and payload.role != "admin":
            raise HTTPException(status_code=400, detail="You cannot remove your own admin role")
        if payload.role == "admin" and db["user"].count_documents({"role": "admin"}) >= settings.MAX_ADMINS:
            raise HTTPException(
                status_code=400, detail=f"Maximum number of admins ({settings.MAX_ADMINS}) reached"
            )
        changes["role"] = payload.role

    if payload.is_active is not None and payload.is_active != user.get("is_active", True):
        if user["_id"] == admin["_id"]:
            raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
        changes["is_active"] = payload.is_active

    if changes:
        changes["updated_at"] = now_utc()
        db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
        clear_stats_cache()
        logger.info("Admin %s updated user %s: %s", admin["_id"], user["_id"], sorted(changes))

    return {"message": "User updated successfully", "user": public_user(db["user"].find_one({"_id": user["_id"]}))}


@router.get("/authors")
async def list_authors(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    authors = []
    for user in db["user"].find({}).sort("name", 1):
        counts = {
            status: db["post"].count_documents({"author_id": user["_id"], "status": status})
            for status in ("published", "draft", "pending_review", "rejected")
        }
        item = user_summary(user)
        item.update({"email": user["email"], "role": user.get("role"), "is_active": user.get("is_active", True)})
        item["posts"] = {"total": sum(counts.values()), **counts}
        authors.append(item)
    return {"authors": authors}


@router.post("/authors/reassign-posts")
async def reassign_posts(
    payload: ReassignRequest,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    source = _user_or_404(db, payload.from_author_id)
    target = _user_or_404(db, payload.to_author_id)
    if source["_id"] == target["_id"]:
        raise HTTPException(status_code=400, detail="Source and target authors must differ")

    post_ids = [p["_id"] for p in db["post"].find({"author_id": source["_id"]}, {"_id": 1})]
    if not post_ids:
        raise HTTPException(status_code=400, detail="Source author has no posts")

    def apply(from_id, to_id):
        db["post"].update_many({"_id": {"$in": post_ids}}, {"$set": {"author_id": to_id, "updated_at": now_utc()}})
        update_user_stats(db, from_id)
        update_user_stats(db, to_id)
        invalidate_post_caches()
        clear_stats_cache()

    apply(source["_id"], target["_id"])
    undo_manager.add_action(
        f"Reassigned {len(post_ids)} posts from {source.get('name')} to {target.get('name')}",
        lambda: apply(target["_id"], source["_id"]),
        kind="reassign_posts",
    )
    logger.info("Admin %s moved %d posts from %s to %s", admin["_id"], len(post_ids), source["_id"], target["_id"])
    return {"message": f"Reassigned {len(post_ids)} posts", "count": len(post_ids)}


def _primary_details(db: Database, details: AuthorDetails, merged_ids: list) -> dict:
    """Validated profile fields to copy onto the surviving account."""
    changes = {k: v for k, v in details.model_dump().items() if v}
    others = {"$nin": merged_ids}
    if "username" in changes:
        username = changes["username"].strip().lower()
        valid, error = validate_username(username)
        if not valid:
            raise HTTPException(status_code=400, detail=error)
        if db["user"].find_one({"username": username, "_id": others}, {"_id": 1}):
            raise HTTPException(status_code=409, detail="Username is already taken")
        changes["username"] = username
    if "email" in changes:
        email = changes["email"].lower()
        if db["user"].find_one({"email": email, "_id": others}, {"_id": 1}):
            raise HTTPException(status_code=409, detail="Email is already registered")
        changes["email"] = email
    return changes


@router.post("/authors/merge")
async def merge_authors(
    payload: AuthorMergeRequest,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    """Fold several accounts into one: posts and followers move to the primary, the rest are deleted."""
    author_ids = list(dict.fromkeys(payload.author_ids))
    if len(author_ids) < 2:
        raise HTTPException(status_code=400, detail="At least 2 authors required for merge")
    if payload.primary_author_id not in author_ids:
        raise HTTPException(status_code=400, detail="Primary author must be one of the selected authors")

    oids = [to_object_id(i) for i in author_ids]
    authors = {u["_id"]: u for u in db["user"].find({"_id": {"$in": [o for o in oids if o]}})}
    if None in oids or len(authors) != len(author_ids):
        raise HTTPException(status_code=404, detail="One or more authors not found")

    primary = authors[to_object_id(payload.primary_author_id)]
    merged = [u for u in authors.values() if u["_id"] != primary["_id"]]
    merged_ids = [u["_id"] for u in merged]
    if admin["_id"] in merged_ids:
        raise HTTPException(status_code=400, detail="You cannot merge away your own account")

    changes = _primary_details(db, payload.keep_details, merged_ids) if payload.keep_details else {}
    if primary["_id"] == admin["_id"] and changes.get("role", "admin") != "admin":
        raise HTTPException(status_code=400, detail="You cannot remove your own admin role")

    everyone = set(authors)
    followers = set(primary.get("followers") or [])
    following = set(primary.get("following") or [])
    for user in merged:
        followers.update(user.get("followers") or [])
        following.update(user.get("following") or [])
    changes["followers"] = [f for f in followers if f not in everyone]
    changes["following"] = [f for f in following if f not in everyone]
    changes["updated_at"] = now_utc()

    # other accounts pointing at a merged author, saved whole for undo
    linked = list(
        db["user"].find(
            {
                "_id": {"$nin": list(everyone)},
                "$or": [{"followers": {"$in": merged_ids}}, {"following": {"$in": merged_ids}}],
            }
        )
    )
    owners = {
        p["_id"]: p["author_id"]
        for p in db["post"].find({"author_id": {"$in": merged_ids}}, {"author_id": 1})
    }
    post_ids = list(owners)

    db["post"].update_many(
        {"_id": {"$in": post_ids}}, {"$set": {"author_id": primary["_id"], "updated_at": now_utc()}}
    )
    db["user"].update_one({"_id": primary["_id"]}, {"$set": changes})
    for user in linked:
        if set(user.get("following") or []) & set(merged_ids):
            db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"following": primary["_id"]}})
        if set(user.get("followers") or []) & set(merged_ids):
            db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"followers": primary["_id"]}})
    db["user"].update_many(
        {"_id": {"$in": [u["_id"] for u in linked]}},
        {"$pull": {"following": {"$in": merged_ids}, "followers": {"$in": merged_ids}}},
    )
    db["user"].delete_many({"_id": {"$in": merged_ids}})
    update_user_stats(db, primary["_id"])
    invalidate_post_caches()
    clear_stats_cache()

    def restore():
        db["user"].insert_many(merged)
        for user in [primary, *linked]:
            db["user"].replace_one({"_id": user["_id"]}, user)
        for user in merged:
            owned = [pid for pid, owner in owners.items() if owner == user["_id"]]
            db["post"].update_many({"_id": {"$in": owned}}, {"$set": {"author_id": user["_id"]}})
        invalidate_post_caches()
        clear_stats_cache()

    undo_manager.add_action(
        f"Merged {len(merged)} author(s) into {primary.get('name')}", restore, kind="merge_authors"
    )
    logger.info(
        "Admin %s merged authors %s into %s (%d posts)", admin["_id"], merged_ids, primary["_id"], len(post_ids)
    )
    return {
        "success": True,
        "message": f"Successfully merged {len(merged)} author(s)",
        "posts_reassigned": len(post_ids),
        "authors_deleted": len(merged),
        "author": public_user(db["user"].find_one({"_id": primary["_id"]})),
    }


@router.post("/categories/merge")
async def merge_categories(
    payload: MergeRequest,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    source = get_category_or_404(db, payload.source_category_id)
    target = get_category_or_404(db, payload.target_category_id)
    if source["_id"] == target["_id"]:
        raise HTTPException(status_code=400, detail="Cannot merge a category into itself")

    post_ids = [p["_id"] for p in db["post"].find({"category_id": source["_id"]}, {"_id": 1})]
    moved_published = db["post"].count_documents({"category_id": source["_id"], "status": "published"})

    db["post"].update_many({"_id": {"$in": post_ids}}, {"$set": {"category_id": target["_id"]}})
    db["category"].update_one(
        {"_id": target["_id"]},
        {"$inc": {"post_count": moved_published, "product_count": source.get("product_count", 0)}},
    )
    product_ids = [p["_id"] for p in db["product"].find({"category_id": source["_id"]}, {"_id": 1})]
    db["product"].update_many({"_id": {"$in": product_ids}}, {"$set": {"category_id": target["_id"]}})
    db["category"].delete_one({"_id": source["_id"]})
    invalidate_post_caches()
    clear_stats_cache()

    def restore():
        db["category"].insert_one(source)
        db["post"].update_many({"_id": {"$in": post_ids}}, {"$set": {"category_id": source["_id"]}})
        db["product"].update_many({"_id": {"$in": product_ids}}, {"$set": {"category_id": source["_id"]}})
        db["category"].update_one(
            {"_id": target["_id"]},
            {"$inc": {"post_count": -moved_published, "product_count": -source.get("product_count", 0)}},
        )
        invalidate_post_caches()
        clear_stats_cache()

    undo_manager.add_action(f"Merged {source['name']} into {target['name']}", restore, kind="merge_categories")
    logger.info("Admin %s merged category %s into %s", admin["_id"], source["slug"], target["slug"])
    return {
        "message": f"Merged {source['name']} into {target['name']}",
        "moved_posts": len(post_ids),
        "target": serialize(db["category"].find_one({"_id": target["_id"]})),
    }


@router.get("/undo")
async def undo_history(admin: dict = Depends(require_admin)):
    return {
        "actions": [a.to_dict() for a in reversed(undo_manager.actions())],
        "can_undo": undo_manager.can_undo,
    }


@router.post("/undo")
async def undo_last(admin: dict = Depends(require_admin)):
    try:
        action = undo_manager.undo()
    except LookupError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("Admin %s undid: %s", admin["_id"], action.description)
    return {"message": f"Undone: {action.description}", "action": action.to_dict()}


@router.get("/activity")
async def recent_activity(
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    activity = []
    for post in db["post"].find({}, {"title": 1, "status": 1, "author_id": 1, "created_at": 1, "comments": 1}).sort(
        "created_at", DESCENDING
    ).limit(limit):
        activity.append(
            {
                "type": "post",
                "message": f'Post "{post["title"]}" ({post["status"]})',
                "post_id": str(post["_id"]),
                "timestamp": post["created_at"],
            }
        )
        for comment in post.get("comments") or []:
            activity.append(
                {
                    "type": "comment",
                    "message": f'New comment on "{post["title"]}"',
                    "post_id": str(post["_id"]),
                    "timestamp": comment["created_at"],
                }
            )
    for user in db["user"].find({}, {"name": 1, "created_at": 1}).sort("created_at", DESCENDING).limit(limit):
        activity.append(
            {
                "type": "user",
                "message": f"{user.get('name')} joined",
                "user_id": str(user["_id"]),
                "timestamp": user["created_at"],
            }
        )

    activity.sort(key=lambda a: a["timestamp"], reverse=True)
    return {"activity": serialize(activity[:limit])}
