"""Edit locks and revision history for posts."""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from pymongo.database import Database

from database import as_utc, get_db, now_utc, serialize
from routes.common import bump_category, get_post_or_404, is_owner, posts_out, user_summary
from routes.posts import content_changed
from security import get_current_user, is_admin
from versions import VersionNotFound, get_history, restore_version

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/posts", tags=["editing"])

LOCK_TIMEOUT = timedelta(minutes=30)


class RestoreRequest(BaseModel):
    version: int
    reason: Optional[str] = None


def _require_editor(post: dict, user: dict) -> None:
    if not (is_owner(user, post) or is_admin(user)):
        raise HTTPException(status_code=403, detail="You can only manage your own posts")


def lock_is_active(editing: dict) -> bool:
    if not editing or not editing.get("is_locked"):
        return False
    locked_at = as_utc(editing.get("locked_at"))
    return locked_at is not None and now_utc() - locked_at < LOCK_TIMEOUT


@router.post("/{post_id}/lock")
async def lock_post(
    post_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    editing = post.get("editing") or {}
    if lock_is_active(editing) and editing.get("locked_by") != user["_id"]:
        raise HTTPException(
            status_code=409,
            detail={
                "error": "Post is currently being edited by another user",
                "locked_by": str(editing["locked_by"]),
                "locked_at": serialize(editing["locked_at"]),
            },
        )

    editing = {"is_locked": True, "locked_by": user["_id"], "locked_at": now_utc()}
    db["post"].update_one({"_id": post["_id"]}, {"$set": {"editing": editing}})
    return {"message": "Post locked for editing", "editing": serialize(editing)}


@router.delete("/{post_id}/lock")
async def unlock_post(
    post_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    editing = post.get("editing") or {}
    if editing.get("locked_by") != user["_id"] and not is_admin(user):
        raise HTTPException(status_code=403, detail="You cannot unlock this post")

    db["post"].update_one(
        {"_id": post["_id"]},
        {"$set": {"editing": {"is_locked": False, "locked_by": None, "locked_at": None}}},
    )
    return {"message": "Post unlocked"}


@router.get("/{post_id}/lock")
async def lock_status(
    post_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    editing = post.get("editing") or {}
    if not lock_is_active(editing):
        return {"is_locked": False, "locked_by": None, "locked_at": None, "is_mine": False}

    locker = db["user"].find_one({"_id": editing["locked_by"]})
    return {
        "is_locked": True,
        "locked_by": user_summary(locker),
        "locked_at": serialize(editing["locked_at"]),
        "is_mine": editing["locked_by"] == user["_id"],
    }


@router.get("/{post_id}/versions")
async def version_history(
    post_id: str,
    limit: int = Query(20, ge=1, le=100),
    skip: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    _require_editor(post, user)

    versions = get_history(db, post["_id"], limit, skip)
    editor_ids = list({v.get("edited_by") for v in versions})
    editors = {u["_id"]: u for u in db["user"].find({"_id": {"$in": editor_ids}})}
    items = []
    for version in versions:
        item = serialize(version)
        item["edited_by"] = user_summary(editors.get(version.get("edited_by")))
        items.append(item)

    return {
        "versions": items,
        "total": db["postversion"].count_documents({"post_id": post["_id"]}),
        "current_post": {"id": str(post["_id"]), "title": post["title"], "status": post["status"]},
    }


@router.post("/{post_id}/versions")
async def restore(
    post_id: str,
    payload: RestoreRequest,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    _require_editor(post, user)

    try:
        restored = restore_version(db, post, payload.version, user["_id"], payload.reason or "")
    except VersionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    if post["status"] == "published" and restored.get("category_id") != post.get("category_id"):
        bump_category(db, post.get("category_id"), -1)
        bump_category(db, restored.get("category_id"), 1)
    content_changed()
    logger.info("Post %s restored to version %d by %s", post["_id"], payload.version, user["_id"])
    return {
        "message": f"Post restored to version {payload.version}",
        "post": posts_out(db, [restored], user)[0],
    }
