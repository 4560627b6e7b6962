"""Lookups and response shapes shared by the routers."""

import copy
import logging
from typing import Callable, Iterable, Optional

from fastapi import HTTPException
from pymongo.database import Database

from database import serialize, to_object_id

logger = logging.getLogger(__name__)

PRIVATE_USER_FIELDS = {"password_hash", "reset_password_token", "reset_password_expire"}
ARRAY_UPDATE_ATTEMPTS = 5


def find_by_id_or_slug(db: Database, collection: str, identifier: str) -> Optional[dict]:
    oid = to_object_id(identifier)
    if oid is not None:
        doc = db[collection].find_one({"_id": oid})
        if doc:
            return doc
    return db[collection].find_one({"slug": identifier})


def get_post_or_404(db: Database, post_id: str) -> dict:
    post = find_by_id_or_slug(db, "post", post_id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


def update_post_array(
    db: Database,
    post_id,
    field: str,
    mutate: Callable[[list], object],
    extra: Optional[Callable[[list], dict]] = None,
):
    """Edit an embedded array of a post and save it, returning what `mutate` returns.

    `mutate` changes a fresh copy of the array in place. The write only lands if
    the stored array still equals the one that was read; otherwise the post is
    read again and `mutate` reruns, so concurrent `$push`es are never dropped.
    `extra(items)` may return more fields to `$set` alongside the array.
    """
    for attempt in range(ARRAY_UPDATE_ATTEMPTS):
        post = db["post"].find_one({"_id": post_id}, {field: 1})
        if post is None:
            raise HTTPException(status_code=404, detail="Post not found")
        current = post.get(field)
        items = copy.deepcopy(current or [])
        result = mutate(items)

        changes = {field: items}
        if extra:
            changes.update(extra(items))
        if db["post"].update_one({"_id": post_id, field: current}, {"$set": changes}).matched_count:
            return result
        logger.debug("Post %s %s changed during update, retrying (%d)", post_id, field, attempt + 1)

    logger.warning("Gave up updating %s on post %s after %d attempts", field, post_id, ARRAY_UPDATE_ATTEMPTS)
    raise HTTPException(status_code=409, detail="The post was changed by another request, please try again")


def find_user(db: Database, identifier: str) -> Optional[dict]:
    """User by id, or by username (case-insensitive)."""
    oid = to_object_id(identifier)
    if oid is not None:
        user = db["user"].find_one({"_id": oid})
        if user:
            return user
    return db["user"].find_one({"username": identifier.lower()})


def user_summary(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return None
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "username": user.get("username"),
        "avatar_url": user.get("avatar_url"),
    }


def public_user(user: dict, include_email: bool = True) -> dict:
    data = {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}
    data["followers_count"] = len(user.get("followers") or [])
    data["following_count"] = len(user.get("following") or [])
    data.pop("followers", None)
    data.pop("following", None)
    if not include_email:
        data.pop("email", None)
        data.pop("settings", None)
    return serialize(data)


def category_summary(category: Optional[dict]) -> Optional[dict]:
    if not category:
        return None
    return {
        "id": str(category["_id"]),
        "name": category.get("name"),
        "slug": category.get("slug"),
        "color": category.get("color"),
    }


def bump_category(db: Database, category_id, delta: int, field: str = "post_count") -> None:
    if category_id is None or not delta:
        return
    db["category"].update_one({"_id": category_id}, {"$inc": {field: delta}})


def is_owner(user: Optional[dict], doc: dict, field: str = "author_id") -> bool:
    return bool(user) and doc.get(field) == user["_id"]


def approved_comment_count(post: dict) -> int:
    return sum(1 for c in post.get("comments") or [] if c.get("is_approved"))


def post_out(post: dict, author: dict = None, category: dict = None, viewer: dict = None) -> dict:
    data = {k: v for k, v in post.items() if k not in ("comments", "likes", "saves", "ratings")}
    data = serialize(data)
    data["author"] = user_summary(author)
    data["category"] = category_summary(category)
    data["like_count"] = len(post.get("likes") or [])
    data["save_count"] = len(post.get("saves") or [])
    data["comment_count"] = approved_comment_count(post)
    data["rating_count"] = len(post.get("ratings") or [])
    if viewer:
        data["is_liked"] = viewer["_id"] in (post.get("likes") or [])
        data["is_bookmarked"] = viewer["_id"] in (post.get("saves") or [])
    return data


def posts_out(db: Database, posts: Iterable, viewer: dict = None) -> list:
    """Serialize posts with their authors and categories loaded in two queries."""
    posts = list(posts)
    author_ids = list({p.get("author_id") for p in posts if p.get("author_id")})
    category_ids = list({p.get("category_id") for p in posts if p.get("category_id")})
    authors = {u["_id"]: u for u in db["user"].find({"_id": {"$in": author_ids}})}
    categories = {c["_id"]: c for c in db["category"].find({"_id": {"$in": category_ids}})}
    return [
        post_out(p, authors.get(p.get("author_id")), categories.get(p.get("category_id")), viewer)
        for p in posts
    ]
