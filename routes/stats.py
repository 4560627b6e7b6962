from fastapi import APIRouter, Depends
from pymongo.database import Database

import stats
from database import get_db
from security import require_admin

router = APIRouter(prefix="/api", tags=["stats"])


@router.get("/stats/unified")
async def unified_stats(db: Database = Depends(get_db)):
    return stats.get_unified_stats(db)


@router.get("/stats/public")
async def public_stats(db: Database = Depends(get_db)):
    return stats.get_unified_stats(db)["stats"]


@router.get("/stats/categories/{identifier}")
async def category_stats(identifier: str, db: Database = Depends(get_db)):
    return {"stats": stats.get_category_stats(db, identifier)}


@router.post("/stats/clear-cache")
async def clear_cache(admin: dict = Depends(require_admin)):
    stats.clear_stats_cache()
    return {"message": "Stats cache cleared"}


@router.get("/admin/stats")
async def admin_stats(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return stats.get_admin_stats(db)
