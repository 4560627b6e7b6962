"""
MongoDB access

The client is created once from DATABASE_URL / DATABASE_NAME. Routes receive
the database through the `get_db` dependency so tests can swap it out.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import settings

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    client = MongoClient(settings.DATABASE_URL)
    db = client[settings.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise RuntimeError("Database is not configured; set DATABASE_URL and DATABASE_NAME")
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo hands back naive datetimes unless the client is tz_aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for `value`, or None if it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(doc: Any) -> Any:
    """Make a Mongo document JSON friendly: ObjectIds become strings, _id becomes id."""
    if isinstance(doc, list):
        return [serialize(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        if doc.tzinfo is None:
            doc = doc.replace(tzinfo=timezone.utc)
        return doc.isoformat()
    if isinstance(doc, dict):
        out = {}
        for key, value in doc.items():
            out["id" if key == "_id" else key] = serialize(value)
        return out
    return doc


def create_document(database: Database, collection_name: str, data: dict) -> str:
    """Insert `data` stamped with created_at / updated_at and return the new id.

    `data` is updated in place with the stamps and its `_id`.
    """
    stamp = now_utc()
    data.setdefault("created_at", stamp)
    data["updated_at"] = stamp
    result = database[collection_name].insert_one(data)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[list] = None,
    skip: int = 0,
) -> list:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def unique_slug(database: Database, collection_name: str, base: str, exclude_id=None) -> str:
    """Return `base`, or `base-2`, `base-3`... whichever is free in the collection."""
    slug = base
    counter = 2
    while True:
        query = {"slug": slug}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if not database[collection_name].find_one(query, {"_id": 1}):
            return slug
        slug = f"{base}-{counter}"
        counter += 1


def pagination(page: int, limit: int, total: int) -> dict:
    pages = math.ceil(total / limit) if limit else 0
    return {
        "current": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "has_next": page < pages,
        "has_prev": page > 1,
    }


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["user"].create_index("username", unique=True, sparse=True)
    database["post"].create_index("slug", unique=True)
    database["post"].create_index([("status", ASCENDING), ("published_at", DESCENDING)])
    database["post"].create_index([("author_id", ASCENDING), ("status", ASCENDING)])
    database["post"].create_index([("category_id", ASCENDING), ("status", ASCENDING)])
    database["category"].create_index("slug", unique=True)
    database["product"].create_index("slug", unique=True)
    database["brand"].create_index("slug", unique=True)
    database["newsletter"].create_index("email", unique=True)
    database["postversion"].create_index([("post_id", ASCENDING), ("version_number", DESCENDING)])
    database["profileview"].create_index([("profile_id", ASCENDING), ("timestamp", DESCENDING)])
    database["postanalytics"].create_index([("post_id", ASCENDING), ("date", ASCENDING)], unique=True)
    database["notification"].create_index([("recipient_id", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Database indexes ensured")
