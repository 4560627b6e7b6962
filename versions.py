"""Revision history for posts, stored in the "postversion" collection."""

import logging

from pymongo import DESCENDING
from pymongo.database import Database

from database import create_document, now_utc

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = [
    "title",
    "content",
    "excerpt",
    "featured_image_url",
    "featured_image_alt",
    "category_id",
    "tags",
    "seo_title",
    "seo_description",
    "seo_keywords",
    "content_type",
    "allow_comments",
    "lang",
    "is_featured",
]

DIFF_FIELDS = ["title", "content", "excerpt", "featured_image_url", "seo_title", "seo_description"]


class VersionNotFound(LookupError):
    pass


def snapshot_of(post: dict) -> dict:
    return {field: post.get(field) for field in SNAPSHOT_FIELDS}


def compute_diff(previous: dict, current: dict) -> dict:
    diff = {"fields_changed": [], "added_tags": [], "removed_tags": [], "content_length_change": 0}
    if previous is None:
        return diff
    diff["fields_changed"] = [f for f in DIFF_FIELDS if current.get(f) != previous.get(f)]
    old_tags = previous.get("tags") or []
    new_tags = current.get("tags") or []
    diff["added_tags"] = [t for t in new_tags if t not in old_tags]
    diff["removed_tags"] = [t for t in old_tags if t not in new_tags]
    diff["content_length_change"] = len(current.get("content") or "") - len(previous.get("content") or "")
    return diff


def summarize(diff: dict) -> str:
    if not diff["fields_changed"]:
        return ""
    summary = "Updated: " + ", ".join(diff["fields_changed"])
    if diff["added_tags"]:
        summary += " | Added tags: " + ", ".join(diff["added_tags"])
    if diff["removed_tags"]:
        summary += " | Removed tags: " + ", ".join(diff["removed_tags"])
    return summary


def latest_version(db: Database, post_id):
    return db["postversion"].find_one({"post_id": post_id}, sort=[("version_number", DESCENDING)])


def create_version(db: Database, post: dict, edited_by, reason: str = "") -> dict:
    previous = latest_version(db, post["_id"])
    snapshot = snapshot_of(post)
    diff = compute_diff(previous["snapshot"] if previous else None, snapshot)
    version = {
        "post_id": post["_id"],
        "version_number": (previous["version_number"] + 1) if previous else 1,
        "snapshot": snapshot,
        "edited_by": edited_by,
        "edit_reason": reason,
        "changes_summary": reason or summarize(diff),
        "diff": diff,
    }
    create_document(db, "postversion", version)
    logger.info("Recorded version %d of post %s", version["version_number"], post["_id"])
    return version


def get_history(db: Database, post_id, limit: int = 20, skip: int = 0) -> list:
    cursor = (
        db["postversion"]
        .find({"post_id": post_id})
        .sort("version_number", DESCENDING)
        .skip(skip)
        .limit(limit)
    )
    return list(cursor)


def get_snapshot(db: Database, post_id, version_number: int) -> dict:
    version = db["postversion"].find_one({"post_id": post_id, "version_number": version_number})
    if not version:
        raise VersionNotFound(f"Version {version_number} not found")
    return version["snapshot"]


def restore_version(db: Database, post: dict, version_number: int, restored_by, reason: str = "") -> dict:
    """Roll `post` back to a stored snapshot and return the updated document.

    The current state is saved as its own version first so the restore can
    itself be undone.
    """
    snapshot = get_snapshot(db, post["_id"], version_number)
    create_version(db, post, restored_by, f"Before restoring to version {version_number}")

    changes = dict(snapshot)
    changes.update({"last_edited_by": restored_by, "last_edited_at": now_utc(), "updated_at": now_utc()})
    db["post"].update_one({"_id": post["_id"]}, {"$set": changes})
    restored = db["post"].find_one({"_id": post["_id"]})

    note = f"Restored to version {version_number}"
    if reason:
        note += f": {reason}"
    create_version(db, restored, restored_by, note)
    return restored
