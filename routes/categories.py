import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from cache import invalidate_post_caches
from database import create_document, get_db, now_utc, serialize, unique_slug
from routes.common import find_by_id_or_slug
from schemas import HEX_COLOR, Category
from security import require_admin
from seo import slugify
from stats import clear_stats_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: str = Field("", max_length=200)
    color: str = Field("#3B82F6", pattern=HEX_COLOR)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    color: Optional[str] = Field(None, pattern=HEX_COLOR)
    is_active: Optional[bool] = None


def name_taken(db: Database, name: str, exclude_id=None) -> bool:
    query = {"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db["category"].find_one(query, {"_id": 1}) is not None


def get_category_or_404(db: Database, identifier: str) -> dict:
    category = find_by_id_or_slug(db, "category", identifier)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@router.get("")
async def list_categories(include_inactive: bool = False, db: Database = Depends(get_db)):
    query = {} if include_inactive else {"is_active": True}
    categories = db["category"].find(query).sort("name", ASCENDING)
    return {"categories": serialize(list(categories))}


@router.get("/top")
async def top_categories(limit: int = Query(6, ge=1, le=50), db: Database = Depends(get_db)):
    categories = (
        db["category"]
        .find({"is_active": True, "post_count": {"$gt": 0}})
        .sort([("post_count", DESCENDING), ("name", ASCENDING)])
        .limit(limit)
    )
    return {"categories": serialize(list(categories))}


@router.get("/{category_id}")
async def get_category(category_id: str, db: Database = Depends(get_db)):
    return {"category": serialize(get_category_or_404(db, category_id))}


@router.post("", status_code=201)
async def create_category(
    payload: CategoryCreate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    name = payload.name.strip()
    if name_taken(db, name):
        raise HTTPException(status_code=409, detail="Category with this name already exists")

    category = Category(
        name=name,
        slug=unique_slug(db, "category", slugify(name) or "category"),
        description=payload.description.strip(),
        color=payload.color,
    ).model_dump()
    create_document(db, "category", category)
    logger.info("Category %s created by %s", category["slug"], admin["_id"])
    return {"message": "Category created successfully", "category": serialize(category)}


@router.put("/{category_id}")
async def update_category(
    category_id: str,
    payload: CategoryUpdate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    category = get_category_or_404(db, category_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if name_taken(db, changes["name"], category["_id"]):
            raise HTTPException(status_code=409, detail="Category with this name already exists")
        if changes["name"] != category["name"]:
            changes["slug"] = unique_slug(db, "category", slugify(changes["name"]) or "category", category["_id"])
    changes["updated_at"] = now_utc()

    db["category"].update_one({"_id": category["_id"]}, {"$set": changes})
    invalidate_post_caches()
    clear_stats_cache()
    return {
        "message": "Category updated successfully",
        "category": serialize(db["category"].find_one({"_id": category["_id"]})),
    }


@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    category = get_category_or_404(db, category_id)
    post_count = db["post"].count_documents({"category_id": category["_id"]})
    if post_count:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete category with {post_count} posts. Move or delete the posts first.",
        )
    db["category"].delete_one({"_id": category["_id"]})
    logger.info("Category %s deleted by %s", category["slug"], admin["_id"])
    return {"message": "Category deleted successfully"}
