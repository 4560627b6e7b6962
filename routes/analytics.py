"""Author profile page analytics."""

import logging
import re
from datetime import datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import as_utc, create_document, get_db, now_utc, to_object_id
from schemas import ProfileView
from security import get_optional_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics/profile-view", tags=["analytics"])

_TABLET_RE = re.compile(r"ipad|tablet|playbook|silk|(android(?!.*mobile))", re.I)
_MOBILE_RE = re.compile(r"mobile|iphone|ipod|android|blackberry|opera mini|iemobile", re.I)


class ViewRequest(BaseModel):
    profile_id: str
    username: Optional[str] = None
    referrer: Optional[str] = None
    session_id: Optional[str] = None


class TimeRequest(BaseModel):
    profile_id: str
    time_spent: int = Field(..., gt=0)


class SectionRequest(BaseModel):
    profile_id: str
    section: str


class ConversionRequest(BaseModel):
    profile_id: str


def parse_user_agent(user_agent: Optional[str]) -> dict:
    if not user_agent:
        return {"device_type": "unknown", "browser": None, "os": None}

    if _TABLET_RE.search(user_agent):
        device = "tablet"
    elif _MOBILE_RE.search(user_agent):
        device = "mobile"
    else:
        device = "desktop"

    if "Edg/" in user_agent:
        browser = "Edge"
    elif "OPR/" in user_agent or "Opera" in user_agent:
        browser = "Opera"
    elif "Firefox/" in user_agent:
        browser = "Firefox"
    elif "Chrome/" in user_agent:
        browser = "Chrome"
    elif "Safari/" in user_agent:
        browser = "Safari"
    else:
        browser = "Other"

    if "Windows" in user_agent:
        os_name = "Windows"
    elif "iPhone" in user_agent or "iPad" in user_agent:
        os_name = "iOS"
    elif "Android" in user_agent:
        os_name = "Android"
    elif "Mac OS X" in user_agent:
        os_name = "macOS"
    elif "Linux" in user_agent:
        os_name = "Linux"
    else:
        os_name = "Other"

    return {"device_type": device, "browser": browser, "os": os_name}


def _profile_id(value: str):
    oid = to_object_id(value)
    if oid is None:
        raise HTTPException(status_code=400, detail="Invalid profile id")
    return oid


def _update_latest(db: Database, profile_id: str, update: dict) -> bool:
    oid = to_object_id(profile_id)
    if oid is None:
        return False
    latest = db["profileview"].find_one({"profile_id": oid}, sort=[("timestamp", DESCENDING)])
    if not latest:
        return False
    db["profileview"].update_one({"_id": latest["_id"]}, update)
    return True


@router.post("")
async def record_view(
    payload: ViewRequest,
    request: Request,
    viewer: Optional[dict] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    profile_id = _profile_id(payload.profile_id)
    if viewer and viewer["_id"] == profile_id:
        return {"success": True, "counted": False}

    user_agent = request.headers.get("user-agent")
    view = ProfileView(
        profile_id=profile_id,
        username=payload.username,
        timestamp=now_utc(),
        referrer=payload.referrer or request.headers.get("referer") or "direct",
        user_agent=user_agent,
        viewer_user_id=viewer["_id"] if viewer else None,
        session_id=payload.session_id,
        **parse_user_agent(user_agent),
    ).model_dump()
    create_document(db, "profileview", view)
    return {"success": True, "counted": True, "views": db["profileview"].count_documents({"profile_id": profile_id})}


@router.get("")
async def view_summary(profile_id: str, db: Database = Depends(get_db)):
    oid = _profile_id(profile_id)
    start_of_day = datetime.combine(now_utc().date(), time.min, tzinfo=timezone.utc)
    views = list(
        db["profileview"].find(
            {"profile_id": oid},
            {"timestamp": 1, "viewer_user_id": 1, "session_id": 1, "followed_after_view": 1},
        )
    )
    total = len(views)
    viewer_keys = (v.get("viewer_user_id") or v.get("session_id") for v in views)
    viewers = {str(key) for key in viewer_keys if key}
    conversions = sum(1 for v in views if v.get("followed_after_view"))
    today = sum(1 for v in views if as_utc(v["timestamp"]) >= start_of_day)
    return {
        "profile_id": profile_id,
        "total_views": total,
        "today": today,
        "unique_viewers": len(viewers),
        "conversions": conversions,
        "conversion_rate": round(conversions / total * 100, 2) if total else 0,
    }


@router.post("/time")
async def track_time(payload: TimeRequest, db: Database = Depends(get_db)):
    try:
        _update_latest(db, payload.profile_id, {"$set": {"time_on_profile": payload.time_spent}})
    except PyMongoError:
        logger.exception("Time tracking failed for profile %s", payload.profile_id)
        return {"success": False, "error": "Failed to track time"}
    return {"success": True, "time_spent": payload.time_spent}


@router.post("/section")
async def track_section(payload: SectionRequest, db: Database = Depends(get_db)):
    try:
        _update_latest(db, payload.profile_id, {"$addToSet": {"sections_viewed": payload.section}})
    except PyMongoError:
        logger.exception("Section tracking failed for profile %s", payload.profile_id)
        return {"success": False, "error": "Failed to track section"}
    return {"success": True, "section": payload.section}


@router.post("/conversion")
async def track_conversion(payload: ConversionRequest, db: Database = Depends(get_db)):
    try:
        updated = _update_latest(
            db, payload.profile_id, {"$set": {"followed_after_view": True, "followed_at": now_utc()}}
        )
    except PyMongoError:
        logger.exception("Conversion tracking failed for profile %s", payload.profile_id)
        return {"success": False, "error": "Failed to track conversion"}
    return {"success": True, "tracked": updated}
