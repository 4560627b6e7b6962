import logging
import re
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

import ratelimit
import seo
from cache import api_cache, invalidate_post_caches, post_list_key
from database import create_document, get_db, now_utc, pagination, unique_slug
from notifications import notify
from routes.common import (
    bump_category,
    find_by_id_or_slug,
    find_user,
    get_post_or_404,
    is_owner,
    post_out,
    posts_out,
)
from routes.post_analytics import record_post_activity, record_post_view
from schemas import Post
from security import get_current_user, get_optional_user, is_admin
from stats import clear_stats_cache, update_user_stats
from versions import create_version, latest_version

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/posts", tags=["posts"])

LIST_CACHE_TTL = 300
AUTHOR_STATUSES = {"draft", "pending_review"}


class PostCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    content: Optional[str] = None
    category_id: Optional[str] = None
    excerpt: Optional[str] = Field(None, max_length=300)
    featured_image_url: Optional[str] = None
    featured_image_alt: Optional[str] = None
    tags: List[str] = []
    status: Literal["draft", "pending_review", "published"] = "draft"
    is_featured: bool = False
    allow_comments: bool = True
    seo_title: Optional[str] = Field(None, max_length=60)
    seo_description: Optional[str] = Field(None, max_length=160)
    seo_keywords: List[str] = []
    lang: Literal["en", "hi"] = "en"
    content_type: Literal["blog", "diy", "recipe"] = "blog"
    affiliate_links: List[dict] = []


class PostUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    content: Optional[str] = None
    category_id: Optional[str] = None
    excerpt: Optional[str] = Field(None, max_length=300)
    featured_image_url: Optional[str] = None
    featured_image_alt: Optional[str] = None
    tags: Optional[List[str]] = None
    status: Optional[Literal["draft", "pending_review", "published", "rejected"]] = None
    rejection_reason: Optional[str] = None
    is_featured: Optional[bool] = None
    allow_comments: Optional[bool] = None
    seo_title: Optional[str] = Field(None, max_length=60)
    seo_description: Optional[str] = Field(None, max_length=160)
    seo_keywords: Optional[List[str]] = None
    lang: Optional[Literal["en", "hi"]] = None
    content_type: Optional[Literal["blog", "diy", "recipe"]] = None
    affiliate_links: Optional[List[dict]] = None
    edit_reason: Optional[str] = None


class PostAction(BaseModel):
    action: Literal["approve", "reject", "submit", "like", "unlike", "feature", "toggle_comments"]
    reason: Optional[str] = None


def content_changed() -> None:
    invalidate_post_caches()
    clear_stats_cache()


def clean_tags(tags) -> list:
    seen = []
    for tag in tags or []:
        tag = tag.strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def _category_or_400(db: Database, category_id: str) -> dict:
    category = find_by_id_or_slug(db, "category", category_id)
    if not category:
        raise HTTPException(status_code=400, detail="Invalid category")
    return category


def _can_view(post: dict, user: Optional[dict]) -> bool:
    return post.get("status") == "published" or is_owner(user, post) or is_admin(user)


def _can_edit(post: dict, user: dict) -> bool:
    return is_owner(user, post) or is_admin(user)


def _visibility_filter(user: Optional[dict], status: Optional[str]) -> dict:
    if is_admin(user):
        return {"status": status} if status else {}
    if user:
        if status == "published":
            return {"status": "published"}
        if status:
            return {"author_id": user["_id"], "status": status}
        return {"$or": [{"status": "published"}, {"author_id": user["_id"]}]}
    return {"status": "published"}


@router.get("")
async def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    category: Optional[str] = None,
    author: Optional[str] = None,
    featured: Optional[bool] = None,
    slug: Optional[str] = None,
    search: Optional[str] = None,
    status: Optional[Literal["draft", "pending_review", "published", "rejected"]] = None,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    cacheable = user is None and not search and status is None
    cache_key = post_list_key(page, limit, category, author, featured, slug)
    if cacheable:
        cached = api_cache.get(cache_key)
        if cached is not None:
            return cached

    query = _visibility_filter(user, status)
    if category:
        found = find_by_id_or_slug(db, "category", category)
        query["category_id"] = found["_id"] if found else None
    if author:
        found = find_user(db, author)
        query["author_id"] = found["_id"] if found else None
    if featured is not None:
        query["is_featured"] = featured
    if slug:
        query["slug"] = slug
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query = {
            "$and": [
                query,
                {"$or": [{"title": pattern}, {"excerpt": pattern}, {"content": pattern}, {"tags": pattern}]},
            ]
        }

    total = db["post"].count_documents(query)
    cursor = (
        db["post"]
        .find(query)
        .sort([("status", ASCENDING), ("published_at", DESCENDING), ("created_at", DESCENDING)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    result = {"posts": posts_out(db, cursor, user), "pagination": pagination(page, limit, total)}
    if cacheable:
        api_cache.set(cache_key, result, LIST_CACHE_TTL)
    return result


@router.post("", status_code=201, dependencies=[Depends(ratelimit.limit("post"))])
async def create_post(
    payload: PostCreate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not payload.title or not payload.content or not payload.category_id:
        raise HTTPException(status_code=400, detail="Title, content, and category are required")
    category = _category_or_400(db, payload.category_id)

    admin = is_admin(user)
    status = payload.status
    if status == "published" and not admin:
        status = "pending_review"

    data = payload.model_dump(exclude={"category_id"})
    data.update(
        {
            "slug": unique_slug(db, "post", seo.slugify(payload.title) or "post"),
            "excerpt": payload.excerpt or seo.make_excerpt(payload.content),
            "reading_time": seo.reading_time(payload.content),
            "author_id": user["_id"],
            "category_id": category["_id"],
            "tags": clean_tags(payload.tags),
            "status": status,
            "is_featured": payload.is_featured if admin else False,
            "published_at": now_utc() if status == "published" else None,
        }
    )
    post = Post(**data).model_dump()
    create_document(db, "post", post)

    if status == "published":
        bump_category(db, category["_id"], 1)
        update_user_stats(db, user["_id"])
    content_changed()
    logger.info("Post %s created by %s with status %s", post["_id"], user["_id"], status)

    message = "Post submitted for review" if status == "pending_review" else "Post created successfully"
    return {"message": message, "post": post_out(post, user, category, user)}


@router.get("/pending")
async def pending_posts(
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not is_admin(user):
        raise HTTPException(status_code=403, detail="Admin access required")
    posts = db["post"].find({"status": "pending_review"}).sort("created_at", ASCENDING)
    return {"posts": posts_out(db, posts)}


@router.get("/{post_id}")
async def get_post(
    post_id: str,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    if not _can_view(post, user):
        raise HTTPException(status_code=404, detail="Post not found")
    # views are counted by POST /{post_id}/view only
    return {"post": posts_out(db, [post], user)[0]}


@router.put("/{post_id}")
async def update_post(
    post_id: str,
    payload: PostUpdate,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    if not _can_edit(post, user):
        raise HTTPException(status_code=403, detail="You can only edit your own posts")

    admin = is_admin(user)
    changes = payload.model_dump(
        exclude_unset=True,
        exclude={"category_id", "status", "rejection_reason", "is_featured", "edit_reason"},
    )
    if "title" in changes:
        if not changes["title"]:
            raise HTTPException(status_code=400, detail="Title cannot be empty")
        if changes["title"] != post["title"]:
            changes["slug"] = unique_slug(db, "post", seo.slugify(changes["title"]) or "post", post["_id"])
    if "content" in changes:
        if not changes["content"]:
            raise HTTPException(status_code=400, detail="Content cannot be empty")
        changes["reading_time"] = seo.reading_time(changes["content"])
        if not payload.excerpt and not post.get("excerpt"):
            changes["excerpt"] = seo.make_excerpt(changes["content"])
    if "tags" in changes:
        changes["tags"] = clean_tags(changes["tags"])

    old_category = post.get("category_id")
    new_category = old_category
    if payload.category_id:
        new_category = _category_or_400(db, payload.category_id)["_id"]
        changes["category_id"] = new_category

    if payload.is_featured is not None and admin:
        changes["is_featured"] = payload.is_featured

    old_status = post["status"]
    new_status = payload.status or old_status
    if payload.status:
        if not admin and payload.status not in AUTHOR_STATUSES:
            raise HTTPException(status_code=403, detail="Authors can only save drafts or submit for review")
        changes["status"] = new_status
        if admin and new_status == "published" and old_status == "pending_review":
            changes.update({"reviewed_by": user["_id"], "reviewed_at": now_utc(), "rejection_reason": None})
        elif admin and new_status == "rejected":
            changes.update(
                {
                    "reviewed_by": user["_id"],
                    "reviewed_at": now_utc(),
                    "rejection_reason": payload.rejection_reason or post.get("rejection_reason"),
                }
            )
        elif new_status == "pending_review":
            changes.update({"rejection_reason": None, "reviewed_by": None, "reviewed_at": None})

    if new_status == "published" and old_status != "published":
        changes["published_at"] = now_utc()
    elif new_status != "published" and old_status == "published":
        changes["published_at"] = None

    was_published = old_status == "published"
    now_published = new_status == "published"
    if was_published and (not now_published or new_category != old_category):
        bump_category(db, old_category, -1)
    if now_published and (not was_published or new_category != old_category):
        bump_category(db, new_category, 1)

    stamp = now_utc()
    changes.update({"last_edited_by": user["_id"], "last_edited_at": stamp, "updated_at": stamp})
    if payload.edit_reason:
        changes["edit_reason"] = payload.edit_reason

    if was_published and latest_version(db, post["_id"]) is None:
        create_version(db, post, post["author_id"], "Original published version")
    db["post"].update_one({"_id": post["_id"]}, {"$set": changes})
    updated = db["post"].find_one({"_id": post["_id"]})
    if was_published:
        create_version(db, updated, user["_id"], payload.edit_reason or "")

    update_user_stats(db, post["author_id"])
    content_changed()
    return {"message": "Post updated successfully", "post": posts_out(db, [updated], user)[0]}


@router.delete("/{post_id}")
async def delete_post(
    post_id: str,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    if not _can_edit(post, user):
        raise HTTPException(status_code=403, detail="You can only delete your own posts")

    db["post"].delete_one({"_id": post["_id"]})
    if post["status"] == "published":
        bump_category(db, post.get("category_id"), -1)
    db["postversion"].delete_many({"post_id": post["_id"]})

    update_user_stats(db, post["author_id"])
    content_changed()
    logger.info("Post %s deleted by %s", post["_id"], user["_id"])
    return {"message": "Post deleted successfully"}


@router.post("/{post_id}/actions")
async def post_action(
    post_id: str,
    payload: PostAction,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    admin = is_admin(user)
    action = payload.action
    stamp = now_utc()

    if action in ("approve", "reject"):
        if not admin:
            raise HTTPException(status_code=403, detail="Only admins can review posts")
        if post["status"] != "pending_review":
            raise HTTPException(status_code=400, detail="Only posts pending review can be approved or rejected")
        if action == "approve":
            db["post"].update_one(
                {"_id": post["_id"]},
                {
                    "$set": {
                        "status": "published",
                        "published_at": stamp,
                        "reviewed_by": user["_id"],
                        "reviewed_at": stamp,
                        "rejection_reason": None,
                    }
                },
            )
            bump_category(db, post.get("category_id"), 1)
            notify(
                db, post["author_id"], user["_id"], "post_approved",
                f'Your post "{post["title"]}" has been approved', post_id=post["_id"],
                link=f"/blog/{post['slug']}",
            )
            message = "Post approved and published"
        else:
            if not payload.reason:
                raise HTTPException(status_code=400, detail="Rejection reason is required")
            db["post"].update_one(
                {"_id": post["_id"]},
                {
                    "$set": {
                        "status": "rejected",
                        "rejection_reason": payload.reason,
                        "reviewed_by": user["_id"],
                        "reviewed_at": stamp,
                    }
                },
            )
            notify(
                db, post["author_id"], user["_id"], "post_rejected",
                f'Your post "{post["title"]}" was rejected: {payload.reason}', post_id=post["_id"],
            )
            message = "Post rejected"
        update_user_stats(db, post["author_id"])
        content_changed()

    elif action == "submit":
        if not is_owner(user, post):
            raise HTTPException(status_code=403, detail="You can only submit your own posts")
        if post["status"] not in ("draft", "rejected"):
            raise HTTPException(status_code=400, detail="Only drafts or rejected posts can be submitted")
        db["post"].update_one(
            {"_id": post["_id"]},
            {"$set": {"status": "pending_review", "rejection_reason": None, "reviewed_by": None, "reviewed_at": None}},
        )
        content_changed()
        message = "Post submitted for review"

    elif action in ("like", "unlike"):
        if post["status"] != "published":
            raise HTTPException(status_code=400, detail="Can only like published posts")
        if action == "like":
            if user["_id"] not in (post.get("likes") or []):
                db["post"].update_one({"_id": post["_id"]}, {"$addToSet": {"likes": user["_id"]}})
                record_post_activity(db, post, {"likes": 1})
                notify(
                    db, post["author_id"], user["_id"], "like_post",
                    f'{user.get("name")} liked your post "{post["title"]}"', post_id=post["_id"],
                    link=f"/blog/{post['slug']}",
                )
            message = "Post liked"
        else:
            db["post"].update_one({"_id": post["_id"]}, {"$pull": {"likes": user["_id"]}})
            message = "Post unliked"
        content_changed()

    elif action == "feature":
        if not admin:
            raise HTTPException(status_code=403, detail="Only admins can feature posts")
        featured = not post.get("is_featured", False)
        db["post"].update_one({"_id": post["_id"]}, {"$set": {"is_featured": featured}})
        invalidate_post_caches()
        message = "Post featured" if featured else "Post unfeatured"

    else:
        if not _can_edit(post, user):
            raise HTTPException(status_code=403, detail="You can only change comment settings on your own posts")
        allow = not post.get("allow_comments", True)
        db["post"].update_one({"_id": post["_id"]}, {"$set": {"allow_comments": allow}})
        message = "Comments enabled" if allow else "Comments disabled"

    updated = db["post"].find_one({"_id": post["_id"]})
    return {"message": message, "post": posts_out(db, [updated], user)[0]}


@router.post("/{post_id}/view")
async def track_view(
    post_id: str,
    request: Request,
    user: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    post = get_post_or_404(db, post_id)
    try:
        if post["status"] != "published" or is_owner(user, post):
            return {"success": True, "counted": False}
        db["post"].update_one({"_id": post["_id"]}, {"$inc": {"views": 1}})
        record_post_view(db, post, request, user)
        return {"success": True, "counted": True, "views": post.get("views", 0) + 1}
    except PyMongoError:
        logger.exception("Failed to record view for post %s", post_id)
        return {"success": True, "counted": False}


@router.get("/{post_id}/schema")
async def post_schema(post_id: str, db: Database = Depends(get_db)):
    post = get_post_or_404(db, post_id)
    if post["status"] != "published":
        raise HTTPException(status_code=404, detail="Post not found")
    author = db["user"].find_one({"_id": post["author_id"]}) or {}
    category = db["category"].find_one({"_id": post.get("category_id")}) or {}
    url = seo.post_url(post)
    article = seo.structured_data(
        "article",
        title=post.get("seo_title") or post["title"],
        description=post.get("seo_description") or post.get("excerpt"),
        author=author,
        published_at=post.get("published_at"),
        modified_at=post.get("updated_at"),
        canonical_url=url,
        image_url=post.get("featured_image_url"),
        image_alt=post.get("featured_image_alt"),
        category=category.get("name"),
        tags=post.get("tags"),
        reading_minutes=post.get("reading_time"),
    )
    crumbs = [("Home", "/"), ("Blog", "/blog")]
    if category:
        crumbs.append((category["name"], f"/category/{category['slug']}"))
    crumbs.append((post["title"], f"/blog/{post['slug']}"))
    return {"article": article, "breadcrumbs": seo.breadcrumb_list(crumbs)}
