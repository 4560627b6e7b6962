"""
Newsletter

Public subscribe / unsubscribe, open and click tracking for sent campaigns,
and the admin side: campaign CRUD, sending, subscriber lists.
"""

import base64
import copy
import logging
from datetime import datetime
from typing import List, Literal, Optional
from urllib.parse import urlparse

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse, Response
from pydantic import BaseModel
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

import mailer
import ratelimit
import settings
from database import create_document, get_db, get_documents, now_utc, pagination, serialize, to_object_id
from ratelimit import client_id
from routes.common import find_by_id_or_slug
from schemas import CampaignSettings, Newsletter, NewsletterCampaign
from security import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["newsletter"])

PIXEL = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")
PIXEL_HEADERS = {"Cache-Control": "no-store, no-cache, must-revalidate, private", "Pragma": "no-cache"}


class SubscribeRequest(BaseModel):
    email: Optional[str] = None
    source: Literal["website", "footer", "popup", "manual", "import"] = "website"
    categories: List[str] = []
    frequency: Literal["daily", "weekly", "monthly"] = "weekly"


class UnsubscribeRequest(BaseModel):
    email: Optional[str] = None


class CampaignCreate(BaseModel):
    title: str
    subject: str
    content: str
    preview_text: Optional[str] = None
    html_content: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    target_audience: Literal["all", "category", "custom"] = "all"
    target_categories: List[str] = []
    target_emails: List[str] = []
    template: Literal["default", "minimal", "featured", "digest"] = "default"
    featured_posts: List[str] = []
    settings: CampaignSettings = CampaignSettings()


class CampaignUpdate(BaseModel):
    title: Optional[str] = None
    subject: Optional[str] = None
    content: Optional[str] = None
    preview_text: Optional[str] = None
    html_content: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    target_audience: Optional[Literal["all", "category", "custom"]] = None
    target_categories: Optional[List[str]] = None
    target_emails: Optional[List[str]] = None
    template: Optional[Literal["default", "minimal", "featured", "digest"]] = None
    featured_posts: Optional[List[str]] = None
    settings: Optional[CampaignSettings] = None


class SendRequest(BaseModel):
    test_email: Optional[str] = None


def normalize_email(email: Optional[str]) -> str:
    if not email or not email.strip():
        raise HTTPException(status_code=400, detail="Email is required")
    try:
        return validate_email(email.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError:
        raise HTTPException(status_code=400, detail="Please provide a valid email address")


def rate(count: int, sent: int) -> float:
    return round(count / sent * 100, 2) if sent else 0


def campaign_out(campaign: dict) -> dict:
    data = serialize({k: v for k, v in campaign.items() if k != "analytics"})
    analytics = dict(campaign.get("analytics") or {})
    sent = analytics.get("sent_count", 0)
    analytics.pop("sent_emails", None)
    analytics.update(
        {
            "open_rate": rate(analytics.get("open_count", 0), sent),
            "click_rate": rate(analytics.get("click_count", 0), sent),
            "unsubscribe_rate": rate(analytics.get("unsubscribe_count", 0), sent),
        }
    )
    data["analytics"] = analytics
    return data


def _ids(values) -> list:
    return [oid for oid in (to_object_id(v) for v in values or []) if oid is not None]


def _campaign_or_404(db: Database, campaign_id: str) -> dict:
    oid = to_object_id(campaign_id)
    campaign = db["newslettercampaign"].find_one({"_id": oid}) if oid else None
    if not campaign:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return campaign


# Subscribers
@router.post("/newsletter/subscribe", status_code=201, dependencies=[Depends(ratelimit.limit("newsletter"))])
def subscribe(payload: SubscribeRequest, request: Request, db: Database = Depends(get_db)):
    email = normalize_email(payload.email)
    existing = db["newsletter"].find_one({"email": email})

    if existing and existing.get("is_active"):
        raise HTTPException(status_code=409, detail="This email is already subscribed")

    category_ids = []
    for identifier in payload.categories:
        category = find_by_id_or_slug(db, "category", identifier)
        if category:
            category_ids.append(category["_id"])
    preferences = {"frequency": payload.frequency, "categories": category_ids}

    if existing:
        db["newsletter"].update_one(
            {"_id": existing["_id"]},
            {
                "$set": {
                    "is_active": True,
                    "subscribed_at": now_utc(),
                    "unsubscribed_at": None,
                    "preferences": preferences,
                    "updated_at": now_utc(),
                }
            },
        )
        message = "Welcome back! Your subscription has been reactivated"
    else:
        subscriber = Newsletter(
            email=email,
            subscribed_at=now_utc(),
            source=payload.source,
            preferences=preferences,
            metadata={
                "ip_address": client_id(request),
                "user_agent": request.headers.get("user-agent"),
                "referrer": request.headers.get("referer"),
            },
        ).model_dump()
        create_document(db, "newsletter", subscriber)
        message = "Successfully subscribed to the newsletter"

    result = mailer.send_welcome_email(email)
    if not result["success"]:
        logger.warning("Welcome email to %s not sent: %s", email, result.get("error"))

    logger.info("Newsletter subscription: %s", email)
    return {"success": True, "message": message}


@router.post("/newsletter/unsubscribe")
async def unsubscribe(payload: UnsubscribeRequest, db: Database = Depends(get_db)):
    if not payload.email:
        raise HTTPException(status_code=400, detail="Email is required")
    email = payload.email.strip().lower()
    subscriber = db["newsletter"].find_one({"email": email})
    if not subscriber:
        raise HTTPException(status_code=404, detail="Email not found in our newsletter list")
    if not subscriber.get("is_active"):
        raise HTTPException(status_code=400, detail="This email is already unsubscribed")

    db["newsletter"].update_one(
        {"_id": subscriber["_id"]},
        {"$set": {"is_active": False, "unsubscribed_at": now_utc(), "updated_at": now_utc()}},
    )
    return {"success": True, "message": "You have been unsubscribed from the newsletter"}


@router.get("/newsletter/unsubscribe")
async def unsubscribe_link(
    email: Optional[str] = None,
    campaign: Optional[str] = None,
    db: Database = Depends(get_db),
):
    site = settings.SITE_URL
    if not email:
        return RedirectResponse(f"{site}/?error=missing-email", status_code=302)

    subscriber = db["newsletter"].find_one({"email": email.strip().lower()})
    if not subscriber:
        return RedirectResponse(f"{site}/?error=not-found", status_code=302)
    if not subscriber.get("is_active"):
        return RedirectResponse(f"{site}/?newsletter=already-unsubscribed", status_code=302)

    db["newsletter"].update_one(
        {"_id": subscriber["_id"]},
        {"$set": {"is_active": False, "unsubscribed_at": now_utc(), "updated_at": now_utc()}},
    )
    campaign_id = to_object_id(campaign) if campaign else None
    if campaign_id:
        db["newslettercampaign"].update_one({"_id": campaign_id}, {"$inc": {"analytics.unsubscribe_count": 1}})
    return RedirectResponse(f"{site}/?newsletter=unsubscribed", status_code=302)


# Tracking
def _mark_recipient(db: Database, campaign_id: str, email: str, event: str) -> None:
    """Flag the recipient's sent_emails entry as opened/clicked and bump the counter once."""
    oid = to_object_id(campaign_id)
    campaign = db["newslettercampaign"].find_one({"_id": oid}) if oid else None
    if not campaign or not (campaign.get("settings") or {}).get(f"track_{event}s", True):
        return

    flag = "opened" if event == "open" else "clicked"
    current = (campaign.get("analytics") or {}).get("sent_emails") or []
    sent_emails = copy.deepcopy(current)
    for entry in sent_emails:
        if entry["email"] == email.lower() and not entry.get(flag):
            entry[flag] = True
            entry[f"{flag}_at"] = now_utc()
            # no-op if another hit changed sent_emails first
            db["newslettercampaign"].update_one(
                {"_id": oid, "analytics.sent_emails": current},
                {"$set": {"analytics.sent_emails": sent_emails}, "$inc": {f"analytics.{event}_count": 1}},
            )
            return


@router.get("/newsletter/track/open/{campaign_id}/{email}")
async def track_open(campaign_id: str, email: str, db: Database = Depends(get_db)):
    try:
        _mark_recipient(db, campaign_id, email, "open")
    except PyMongoError:
        logger.exception("Open tracking failed for campaign %s", campaign_id)
    return Response(content=PIXEL, media_type="image/gif", headers=PIXEL_HEADERS)


@router.get("/newsletter/track/click/{campaign_id}/{email}")
async def track_click(campaign_id: str, email: str, url: Optional[str] = None, db: Database = Depends(get_db)):
    target = url if url and urlparse(url).scheme in ("http", "https") else f"{settings.SITE_URL}/"
    try:
        _mark_recipient(db, campaign_id, email, "click")
    except PyMongoError:
        logger.exception("Click tracking failed for campaign %s", campaign_id)
    return RedirectResponse(target, status_code=302)


# Admin
@router.get("/admin/newsletter/subscribers")
async def list_subscribers(
    status: Literal["active", "inactive", "all"] = "active",
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    query = {} if status == "all" else {"is_active": status == "active"}
    total = db["newsletter"].count_documents(query)
    subscribers = get_documents(
        db, "newsletter", query, limit=limit, sort=[("subscribed_at", DESCENDING)], skip=(page - 1) * limit
    )
    return {
        "subscribers": serialize(subscribers),
        "pagination": pagination(page, limit, total),
        "stats": {
            "total": db["newsletter"].count_documents({}),
            "active": db["newsletter"].count_documents({"is_active": True}),
            "inactive": db["newsletter"].count_documents({"is_active": False}),
        },
    }


@router.get("/admin/newsletter/campaigns")
async def list_campaigns(
    status: Optional[Literal["draft", "scheduled", "sending", "sent", "failed"]] = None,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    query = {"status": status} if status else {}
    campaigns = db["newslettercampaign"].find(query).sort("created_at", DESCENDING)
    return {"campaigns": [campaign_out(c) for c in campaigns]}


@router.post("/admin/newsletter/campaigns", status_code=201)
async def create_campaign(
    payload: CampaignCreate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    data = payload.model_dump()
    data.update(
        {
            "created_by": admin["_id"],
            "status": "scheduled" if payload.scheduled_for else "draft",
            "target_categories": _ids(payload.target_categories),
            "featured_posts": _ids(payload.featured_posts),
            "target_emails": [e.strip().lower() for e in payload.target_emails if e.strip()],
        }
    )
    campaign = NewsletterCampaign(**data).model_dump()
    create_document(db, "newslettercampaign", campaign)
    logger.info("Campaign %s created by %s", campaign["_id"], admin["_id"])
    return {"message": "Campaign created successfully", "campaign": campaign_out(campaign)}


@router.get("/admin/newsletter/campaigns/{campaign_id}")
async def get_campaign(campaign_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    campaign = _campaign_or_404(db, campaign_id)
    data = campaign_out(campaign)
    data["sent_emails"] = serialize((campaign.get("analytics") or {}).get("sent_emails", []))
    return {"campaign": data}


@router.put("/admin/newsletter/campaigns/{campaign_id}")
async def update_campaign(
    campaign_id: str,
    payload: CampaignUpdate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    campaign = _campaign_or_404(db, campaign_id)
    if campaign["status"] in ("sent", "sending"):
        raise HTTPException(status_code=400, detail="Sent campaigns cannot be edited")

    changes = payload.model_dump(exclude_unset=True)
    if "target_categories" in changes:
        changes["target_categories"] = _ids(changes["target_categories"])
    if "featured_posts" in changes:
        changes["featured_posts"] = _ids(changes["featured_posts"])
    if "scheduled_for" in changes:
        changes["status"] = "scheduled" if changes["scheduled_for"] else "draft"
    changes["updated_at"] = now_utc()

    db["newslettercampaign"].update_one({"_id": campaign["_id"]}, {"$set": changes})
    return {
        "message": "Campaign updated successfully",
        "campaign": campaign_out(db["newslettercampaign"].find_one({"_id": campaign["_id"]})),
    }


@router.delete("/admin/newsletter/campaigns/{campaign_id}")
async def delete_campaign(campaign_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    campaign = _campaign_or_404(db, campaign_id)
    if campaign["status"] in ("sent", "sending"):
        raise HTTPException(status_code=400, detail="Sent campaigns cannot be deleted")
    db["newslettercampaign"].delete_one({"_id": campaign["_id"]})
    return {"message": "Campaign deleted successfully"}


def resolve_audience(db: Database, campaign: dict) -> list:
    audience = campaign.get("target_audience", "all")
    if audience == "all":
        query = {"is_active": True}
    elif audience == "category" and campaign.get("target_categories"):
        query = {"is_active": True, "preferences.categories": {"$in": campaign["target_categories"]}}
    elif audience == "custom" and campaign.get("target_emails"):
        query = {"is_active": True, "email": {"$in": campaign["target_emails"]}}
    else:
        return []
    return list(db["newsletter"].find(query, {"email": 1}))


@router.post("/admin/newsletter/campaigns/{campaign_id}/send")
def send_campaign(
    campaign_id: str,
    payload: SendRequest,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    campaign = _campaign_or_404(db, campaign_id)
    posts = []
    if campaign.get("featured_posts"):
        posts = list(db["post"].find({"_id": {"$in": campaign["featured_posts"]}, "status": "published"}))

    if payload.test_email:
        test_email = normalize_email(payload.test_email)
        result = mailer.send_email(
            test_email, f"[TEST] {campaign['subject']}", mailer.newsletter_html(campaign, test_email, posts)
        )
        if not result["success"]:
            raise HTTPException(status_code=502, detail=f"Failed to send test email: {result.get('error')}")
        return {"success": True, "message": f"Test email sent to {test_email}"}

    if campaign["status"] == "sent":
        raise HTTPException(status_code=400, detail="Campaign has already been sent")
    if campaign["status"] == "sending":
        raise HTTPException(status_code=400, detail="Campaign is currently being sent")

    campaigns = db["newslettercampaign"]
    campaigns.update_one({"_id": campaign["_id"]}, {"$set": {"status": "sending"}})

    try:
        subscribers = resolve_audience(db, campaign)
        if not subscribers:
            campaigns.update_one({"_id": campaign["_id"]}, {"$set": {"status": "failed"}})
            raise HTTPException(status_code=400, detail="No active subscribers found for this campaign")

        emails = [
            {
                "to": s["email"],
                "subject": campaign["subject"],
                "html": mailer.newsletter_html(campaign, s["email"], posts),
                "text": campaign.get("content"),
            }
            for s in subscribers
        ]
        results = mailer.send_bulk_emails(
            emails,
            on_progress=lambda p: logger.debug("Campaign %s: %d/%d", campaign["_id"], p["current"], p["total"]),
        )
    except HTTPException:
        raise
    except Exception:
        logger.exception("Campaign %s failed while sending", campaign["_id"])
        campaigns.update_one({"_id": campaign["_id"]}, {"$set": {"status": "failed"}})
        raise HTTPException(status_code=500, detail="Campaign sending failed, it can be sent again")

    errors = {e["email"]: e["error"] for e in results["errors"]}
    stamp = now_utc()
    sent_emails = [
        {
            "email": s["email"],
            "sent_at": stamp,
            "status": "failed" if s["email"] in errors else "sent",
            "error_message": errors.get(s["email"]),
            "opened": False,
            "clicked": False,
        }
        for s in subscribers
    ]
    final_status = "failed" if results["sent"] == 0 else "sent"
    campaigns.update_one(
        {"_id": campaign["_id"]},
        {
            "$set": {
                "status": final_status,
                "sent_at": stamp if final_status == "sent" else None,
                "analytics.total_recipients": len(subscribers),
                "analytics.sent_count": results["sent"],
                "analytics.failed_count": results["failed"],
                "analytics.sent_emails": sent_emails,
            }
        },
    )
    logger.info(
        "Campaign %s finished as %s: %d sent, %d failed",
        campaign["_id"], final_status, results["sent"], results["failed"],
    )
    return {
        "success": results["sent"] > 0,
        "message": f"Campaign sent to {results['sent']} subscribers",
        "results": results,
    }
