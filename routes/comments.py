"""
Comments

Comments are embedded in their post document. New comments are `$push`ed;
every other change goes through `update_post_array`, which only writes the
edited `comments` array back if nobody changed it in the meantime.
"""

import logging
from typing import Literal, Optional

from bson import ObjectId
from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo.database import Database

import ratelimit
from database import get_db, now_utc, serialize, to_object_id
from notifications import notify
from routes.common import get_post_or_404, is_owner, update_post_array, user_summary
from routes.post_analytics import record_post_activity
from security import get_current_user, get_optional_user, is_admin, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["comments"])

MAX_COMMENT_LENGTH = 1000


class CommentRequest(BaseModel):
    content: Optional[str] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    parent_comment_id: Optional[str] = None


class ModerateRequest(BaseModel):
    action: Literal["approve", "reject"]


def comment_stats(comments: list) -> dict:
    return {
        "total": len(comments),
        "approved": sum(1 for c in comments if c.get("is_approved")),
        "pending": sum(1 for c in comments if not c.get("is_approved")),
        "reported": sum(1 for c in comments if c.get("is_reported")),
        "replies": sum(1 for c in comments if c.get("parent_comment_id")),
    }


def thread(comments: list, authors: dict) -> list:
    """Group replies under their top-level comment: top level newest first, replies oldest first.

    Replies to replies are listed with the rest of their thread and keep their
    own parent_comment_id. A reply whose ancestor is not in `comments` is left out.
    """
    def out(comment):
        item = serialize({k: v for k, v in comment.items() if k not in ("likes", "guest_email")})
        item["author"] = user_summary(authors.get(comment.get("author_id")))
        item["like_count"] = len(comment.get("likes") or [])
        return item

    by_id = {c["id"]: c for c in comments}

    def root_of(comment):
        seen = set()
        while comment.get("parent_comment_id") is not None:
            if comment["id"] in seen:
                return None
            seen.add(comment["id"])
            comment = by_id.get(comment["parent_comment_id"])
            if comment is None:
                return None
        return comment["id"]

    replies = {}
    for comment in comments:
        if comment.get("parent_comment_id") is not None:
            root = root_of(comment)
            if root is not None:
                replies.setdefault(root, []).append(comment)

    top_level = [c for c in comments if c.get("parent_comment_id") is None]
    top_level.sort(key=lambda c: c["created_at"], reverse=True)
    result = []
    for comment in top_level:
        item = out(comment)
        children = sorted(replies.get(comment["id"], []), key=lambda c: c["created_at"])
        item["replies"] = [out(c) for c in children]
        result.append(item)
    return result


def _find_comment(comments: list, comment_id) -> dict:
    oid = to_object_id(comment_id)
    for comment in comments:
        if comment["id"] == oid:
            return comment
    raise HTTPException(status_code=404, detail="Comment not found")


def remove_thread(comments: list, comment_id) -> int:
    """Drop a comment and every reply below it, at any depth. Returns how many went."""
    doomed = {comment_id}
    grew = True
    while grew:
        grew = False
        for comment in comments:
            if comment.get("parent_comment_id") in doomed and comment["id"] not in doomed:
                doomed.add(comment["id"])
                grew = True
    before = len(comments)
    comments[:] = [c for c in comments if c["id"] not in doomed]
    return before - len(comments)


@router.get("/posts/{post_id}/comments")
async def list_comments(
    post_id: str,
    include_unapproved: bool = False,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    comments = post.get("comments") or []
    visible = comments if include_unapproved and is_admin(user) else [c for c in comments if c.get("is_approved")]
    author_ids = list({c["author_id"] for c in visible if c.get("author_id")})
    authors = {u["_id"]: u for u in db["user"].find({"_id": {"$in": author_ids}})}
    return {
        "comments": thread(visible, authors),
        "allow_comments": post.get("allow_comments", True),
        "stats": comment_stats(comments),
    }


@router.post("/posts/{post_id}/comments", status_code=201, dependencies=[Depends(ratelimit.limit("comment"))])
async def add_comment(
    post_id: str,
    payload: CommentRequest,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    content = (payload.content or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Comment text is required")
    if len(content) > MAX_COMMENT_LENGTH:
        raise HTTPException(status_code=400, detail="Comment cannot be more than 1000 characters")

    guest_name = guest_email = None
    if not user:
        if not payload.guest_name or not payload.guest_email:
            raise HTTPException(status_code=400, detail="Name and email are required for guest comments")
        try:
            guest_email = validate_email(payload.guest_email, check_deliverability=False).normalized
        except EmailNotValidError:
            raise HTTPException(status_code=400, detail="Please provide a valid email address")
        guest_name = payload.guest_name.strip()

    post = get_post_or_404(db, post_id)
    if not post.get("allow_comments", True):
        raise HTTPException(status_code=403, detail="Comments are disabled for this post")

    parent = None
    if payload.parent_comment_id:
        parent = _find_comment(post.get("comments") or [], payload.parent_comment_id)

    admin = is_admin(user)
    comment = {
        "id": ObjectId(),
        "author_id": user["_id"] if user else None,
        "guest_name": guest_name,
        "guest_email": guest_email,
        "content": content,
        "parent_comment_id": parent["id"] if parent else None,
        "is_approved": admin,
        "likes": [],
        "is_reported": False,
        "report_count": 0,
        "is_edited": False,
        "edited_at": None,
        "created_at": now_utc(),
    }
    db["post"].update_one({"_id": post["_id"]}, {"$push": {"comments": comment}})
    record_post_activity(db, post, {"comments": 1})

    actor = user["_id"] if user else None
    commenter = user.get("name") if user else guest_name
    link = f"/blog/{post['slug']}#comment-{comment['id']}"
    notify(
        db, post["author_id"], actor, "comment_post",
        f'{commenter} commented on "{post["title"]}"', post_id=post["_id"], comment_id=comment["id"], link=link,
    )
    if parent and parent.get("author_id") and parent["author_id"] != post["author_id"]:
        notify(
            db, parent["author_id"], actor, "reply_comment",
            f"{commenter} replied to your comment", post_id=post["_id"], comment_id=comment["id"], link=link,
        )

    message = "Comment posted successfully" if admin else "Comment submitted for review"
    item = serialize({k: v for k, v in comment.items() if k not in ("likes", "guest_email")})
    item["author"] = user_summary(user)
    return {"message": message, "comment": item}


@router.patch("/posts/{post_id}/comments/{comment_id}/moderate")
async def moderate_comment(
    post_id: str,
    comment_id: str,
    payload: ModerateRequest,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)

    def apply(comments):
        comment = _find_comment(comments, comment_id)
        if payload.action == "approve":
            comment["is_approved"] = True
            comment["is_reported"] = False
        else:
            remove_thread(comments, comment["id"])

    update_post_array(db, post["_id"], "comments", apply)
    logger.info("Comment %s on post %s: %s by %s", comment_id, post["_id"], payload.action, admin["_id"])
    message = "Comment approved" if payload.action == "approve" else "Comment rejected and removed"
    return {"message": message}


@router.patch("/posts/{post_id}/comments/{comment_id}/report")
async def report_comment(
    post_id: str,
    comment_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)

    def apply(comments):
        comment = _find_comment(comments, comment_id)
        comment["is_reported"] = True
        comment["report_count"] = comment.get("report_count", 0) + 1
        return comment["report_count"]

    report_count = update_post_array(db, post["_id"], "comments", apply)
    return {"message": "Comment reported", "report_count": report_count}


@router.post("/posts/{post_id}/comments/{comment_id}/like")
async def like_comment(
    post_id: str,
    comment_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)

    def apply(comments):
        comment = _find_comment(comments, comment_id)
        likes = comment.setdefault("likes", [])
        if user["_id"] in likes:
            likes.remove(user["_id"])
            return comment, False
        likes.append(user["_id"])
        return comment, True

    comment, liked = update_post_array(db, post["_id"], "comments", apply)
    if liked:
        notify(
            db, comment.get("author_id"), user["_id"], "like_comment",
            f"{user.get('name')} liked your comment", post_id=post["_id"], comment_id=comment["id"],
        )
    return {"liked": liked, "like_count": len(comment["likes"])}


@router.delete("/posts/{post_id}/comments/{comment_id}")
async def delete_comment(
    post_id: str,
    comment_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)

    def apply(comments):
        comment = _find_comment(comments, comment_id)
        if not (is_owner(user, comment) or is_admin(user)):
            raise HTTPException(status_code=403, detail="You can only delete your own comments")
        return remove_thread(comments, comment["id"])

    removed = update_post_array(db, post["_id"], "comments", apply)
    return {"message": "Comment deleted", "removed": removed}


@router.get("/admin/comments")
async def moderation_queue(
    status: Literal["pending", "reported", "all"] = "pending",
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    if status == "pending":
        query = {"comments.is_approved": False}
    elif status == "reported":
        query = {"comments.is_reported": True}
    else:
        query = {"comments.0": {"$exists": True}}

    items = []
    for post in db["post"].find(query, {"title": 1, "slug": 1, "comments": 1}):
        for comment in post.get("comments") or []:
            if status == "pending" and comment.get("is_approved"):
                continue
            if status == "reported" and not comment.get("is_reported"):
                continue
            item = serialize({k: v for k, v in comment.items() if k != "likes"})
            item["post"] = {"id": str(post["_id"]), "title": post["title"], "slug": post["slug"]}
            items.append(item)

    items.sort(key=lambda c: c["created_at"], reverse=True)
    return {"comments": items, "total": len(items)}
