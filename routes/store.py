"""
Affiliate store

Products belong to a brand and a (shared) category; both keep a denormalized
product_count. Affiliate links are only handed out through the click endpoint
and single-product reads, never in list views.
"""

import logging
import math
import re
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

import seo
from database import create_document, get_db, now_utc, serialize, unique_slug
from routes.common import bump_category, category_summary, find_by_id_or_slug
from schemas import AffiliateNetwork, Brand, Product, discount_percent
from security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["store"])

SORTS = {
    "newest": [("created_at", DESCENDING)],
    "price-low": [("price", ASCENDING)],
    "price-high": [("price", DESCENDING)],
    "popular": [("click_count", DESCENDING), ("view_count", DESCENDING)],
    "rating": [("rating", DESCENDING)],
}
REQUIRED_PRODUCT_FIELDS = ("title", "price", "affiliate_link", "brand_id", "category_id")
NULLABLE_PRODUCT_FIELDS = {"short_description", "featured_image", "original_price", "meta_title", "meta_description"}


class ProductCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    slug: Optional[str] = None
    description: str = ""
    short_description: Optional[str] = Field(None, max_length=500)
    images: List[str] = []
    featured_image: Optional[str] = None
    brand_id: Optional[str] = None
    category_id: Optional[str] = None
    subcategories: List[str] = []
    tags: List[str] = []
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    currency: str = "INR"
    affiliate_link: Optional[str] = None
    affiliate_network: AffiliateNetwork = "Amazon"
    rating: float = Field(0, ge=0, le=5)
    review_count: int = 0
    is_active: bool = True
    is_featured: bool = False
    in_stock: bool = True
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None


class ProductUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    short_description: Optional[str] = Field(None, max_length=500)
    images: Optional[List[str]] = None
    featured_image: Optional[str] = None
    brand_id: Optional[str] = None
    category_id: Optional[str] = None
    subcategories: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    affiliate_link: Optional[str] = None
    affiliate_network: Optional[AffiliateNetwork] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    review_count: Optional[int] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    in_stock: Optional[bool] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None


class BrandCreate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    logo: Optional[str] = None
    website: Optional[str] = None
    affiliate_program: Optional[str] = None
    color: str = "#000000"
    is_active: bool = True
    is_featured: bool = False


def brand_summary(brand: Optional[dict]) -> Optional[dict]:
    if not brand:
        return None
    return {
        "id": str(brand["_id"]),
        "name": brand.get("name"),
        "slug": brand.get("slug"),
        "logo": brand.get("logo"),
        "color": brand.get("color"),
    }


def product_out(product: dict, brand: dict = None, category: dict = None, include_link: bool = True) -> dict:
    data = serialize(product)
    if not include_link:
        data.pop("affiliate_link", None)
    data["brand"] = brand_summary(brand)
    data["category"] = category_summary(category)
    return data


def bump_brand(db: Database, brand_id, delta: int) -> None:
    if brand_id is not None:
        db["brand"].update_one({"_id": brand_id}, {"$inc": {"product_count": delta}})


def _resolve(db: Database, collection: str, identifier: Optional[str], label: str):
    doc = find_by_id_or_slug(db, collection, identifier) if identifier else None
    if not doc:
        raise HTTPException(status_code=400, detail=f"{label} not found")
    return doc["_id"]


def _product_or_404(db: Database, slug: str, active_only: bool = False) -> dict:
    query = {"slug": slug}
    if active_only:
        query["is_active"] = True
    product = db["product"].find_one(query)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _with_refs(db: Database, product: dict, include_link: bool = True) -> dict:
    brand = db["brand"].find_one({"_id": product.get("brand_id")}) if product.get("brand_id") else None
    category = db["category"].find_one({"_id": product.get("category_id")})
    return product_out(product, brand, category, include_link)


# Products
@router.get("/store/products")
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    brand: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    featured: Optional[bool] = None,
    search: Optional[str] = None,
    sort: Literal["newest", "price-low", "price-high", "popular", "rating"] = "newest",
    db: Database = Depends(get_db),
):
    query = {"is_active": True}
    if brand:
        found = db["brand"].find_one({"slug": brand})
        if found:
            query["brand_id"] = found["_id"]
    if category:
        found = db["category"].find_one({"slug": category})
        if found:
            query["category_id"] = found["_id"]
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if featured:
        query["is_featured"] = True
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"description": pattern}, {"tags": pattern}]

    total = db["product"].count_documents(query)
    skip = (page - 1) * limit
    products = list(db["product"].find(query).sort(SORTS[sort]).skip(skip).limit(limit))

    brands = {b["_id"]: b for b in db["brand"].find({"_id": {"$in": [p.get("brand_id") for p in products]}})}
    categories = {
        c["_id"]: c for c in db["category"].find({"_id": {"$in": [p.get("category_id") for p in products]}})
    }
    return {
        "products": [
            product_out(p, brands.get(p.get("brand_id")), categories.get(p.get("category_id")), include_link=False)
            for p in products
        ],
        "pagination": {
            "current_page": page,
            "total_pages": math.ceil(total / limit),
            "total_products": total,
            "has_more": skip + len(products) < total,
        },
    }


@router.post("/store/products", status_code=201)
async def create_product(
    payload: ProductCreate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    data = payload.model_dump()
    missing = [f for f in REQUIRED_PRODUCT_FIELDS if not data.get(f)]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")

    data["brand_id"] = _resolve(db, "brand", payload.brand_id, "Brand")
    data["category_id"] = _resolve(db, "category", payload.category_id, "Category")
    data["slug"] = unique_slug(db, "product", seo.slugify(payload.slug or payload.title) or "product")
    data["featured_image"] = payload.featured_image or (payload.images[0] if payload.images else "")
    data["discount"] = discount_percent(payload.price, payload.original_price)

    product = Product(**data).model_dump()
    create_document(db, "product", product)
    bump_brand(db, product["brand_id"], 1)
    bump_category(db, product["category_id"], 1, field="product_count")

    logger.info("Product %s created by %s", product["slug"], admin["_id"])
    return {"message": "Product created successfully", "product": _with_refs(db, product)}


@router.get("/store/products/{slug}")
async def get_product(slug: str, db: Database = Depends(get_db)):
    return {"product": _with_refs(db, _product_or_404(db, slug, active_only=True))}


@router.put("/store/products/{slug}")
async def update_product(
    slug: str,
    payload: ProductUpdate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    product = _product_or_404(db, slug)
    changes = payload.model_dump(exclude_unset=True)
    emptied = [
        f for f, v in changes.items()
        if (v is None and f not in NULLABLE_PRODUCT_FIELDS) or (f in REQUIRED_PRODUCT_FIELDS and not v)
    ]
    if emptied:
        raise HTTPException(status_code=400, detail=f"Fields cannot be empty: {', '.join(emptied)}")

    if changes.get("brand_id"):
        new_brand = _resolve(db, "brand", changes["brand_id"], "Brand")
        if new_brand != product.get("brand_id"):
            bump_brand(db, product.get("brand_id"), -1)
            bump_brand(db, new_brand, 1)
        changes["brand_id"] = new_brand
    if changes.get("category_id"):
        new_category = _resolve(db, "category", changes["category_id"], "Category")
        if new_category != product.get("category_id"):
            bump_category(db, product.get("category_id"), -1, field="product_count")
            bump_category(db, new_category, 1, field="product_count")
        changes["category_id"] = new_category

    if "price" in changes or "original_price" in changes:
        changes["discount"] = discount_percent(
            changes.get("price", product["price"]), changes.get("original_price", product.get("original_price"))
        )
    changes["updated_at"] = now_utc()

    db["product"].update_one({"_id": product["_id"]}, {"$set": changes})
    return {
        "message": "Product updated successfully",
        "product": _with_refs(db, db["product"].find_one({"_id": product["_id"]})),
    }


@router.delete("/store/products/{slug}")
async def delete_product(slug: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    product = _product_or_404(db, slug)
    bump_brand(db, product.get("brand_id"), -1)
    bump_category(db, product.get("category_id"), -1, field="product_count")
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted by %s", slug, admin["_id"])
    return {"message": "Product deleted successfully"}


@router.post("/store/products/{slug}/view")
async def record_view(slug: str, db: Database = Depends(get_db)):
    product = _product_or_404(db, slug, active_only=True)
    db["product"].update_one({"_id": product["_id"]}, {"$inc": {"view_count": 1}})
    return {"success": True, "view_count": product.get("view_count", 0) + 1}


@router.post("/store/products/{slug}/click")
async def record_click(slug: str, db: Database = Depends(get_db)):
    product = _product_or_404(db, slug, active_only=True)
    db["product"].update_one(
        {"_id": product["_id"]}, {"$inc": {"click_count": 1}, "$set": {"last_clicked_at": now_utc()}}
    )
    return {
        "success": True,
        "affiliate_link": product["affiliate_link"],
        "click_count": product.get("click_count", 0) + 1,
    }


# Brands and categories
@router.get("/store/brands")
async def list_brands(active: bool = False, db: Database = Depends(get_db)):
    query = {"is_active": True} if active else {}
    brands = db["brand"].find(query).sort([("product_count", DESCENDING), ("name", ASCENDING)])
    return {"brands": serialize(list(brands))}


@router.post("/store/brands", status_code=201)
async def create_brand(payload: BrandCreate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    if not payload.name or not payload.name.strip():
        raise HTTPException(status_code=400, detail="Brand name is required")
    name = payload.name.strip()
    if db["brand"].find_one({"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}):
        raise HTTPException(status_code=400, detail="Brand with this name already exists")

    data = payload.model_dump()
    data.update({"name": name, "slug": unique_slug(db, "brand", seo.slugify(name))})
    brand = Brand(**data).model_dump()
    create_document(db, "brand", brand)
    return {"message": "Brand created successfully", "brand": serialize(brand)}


@router.get("/store/categories")
async def store_categories(db: Database = Depends(get_db)):
    categories = db["category"].find({"is_active": True, "product_count": {"$gt": 0}}).sort(
        [("product_count", DESCENDING), ("name", ASCENDING)]
    )
    return {"categories": serialize(list(categories))}


@router.get("/admin/store/analytics")
async def store_analytics(
    limit: int = Query(10, ge=1, le=50),
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    products = db["product"]
    totals = {"views": 0, "clicks": 0}
    for product in products.find({}, {"view_count": 1, "click_count": 1}):
        totals["views"] += product.get("view_count", 0)
        totals["clicks"] += product.get("click_count", 0)

    def top(field):
        items = products.find({field: {"$gt": 0}}).sort(field, DESCENDING).limit(limit)
        return [product_out(p, include_link=False) for p in items]

    return {
        "totals": {
            "products": products.count_documents({}),
            "active_products": products.count_documents({"is_active": True}),
            "featured_products": products.count_documents({"is_featured": True}),
            "brands": db["brand"].count_documents({}),
            "views": totals["views"],
            "clicks": totals["clicks"],
            "click_through_rate": round(totals["clicks"] / totals["views"] * 100, 2) if totals["views"] else 0,
        },
        "top_clicked": top("click_count"),
        "top_viewed": top("view_count"),
    }
