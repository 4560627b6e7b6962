from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from pymongo import DESCENDING
from pymongo.database import Database

from database import get_db, serialize, to_object_id
from routes.common import user_summary
from security import get_current_user

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class MarkReadRequest(BaseModel):
    ids: Optional[List[str]] = None


@router.get("")
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    query = {"recipient_id": user["_id"]}
    if unread_only:
        query["is_read"] = False
    items = list(db["notification"].find(query).sort("created_at", DESCENDING).limit(limit))
    senders = {
        u["_id"]: u for u in db["user"].find({"_id": {"$in": [n.get("sender_id") for n in items]}})
    }
    out = []
    for item in items:
        data = serialize(item)
        data["sender"] = user_summary(senders.get(item.get("sender_id")))
        out.append(data)
    return {
        "notifications": out,
        "unread_count": db["notification"].count_documents({"recipient_id": user["_id"], "is_read": False}),
    }


@router.patch("")
async def mark_read(
    payload: MarkReadRequest,
    user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    query = {"recipient_id": user["_id"], "is_read": False}
    if payload.ids:
        query["_id"] = {"$in": [oid for oid in map(to_object_id, payload.ids) if oid]}
    result = db["notification"].update_many(query, {"$set": {"is_read": True}})
    return {"message": "Notifications marked as read", "updated": result.modified_count}
