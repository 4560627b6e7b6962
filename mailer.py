"""
Outbound email through the Resend HTTP API.

Templates live in templates/email and are rendered with Jinja2. Sending never
raises: every call reports {"success": bool, ...} so a mail outage cannot
break the request that triggered it.
"""

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

import settings
from seo import strip_html

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
BATCH_SIZE = 10
BATCH_DELAY = 1.0
TIMEOUT = 15

TEMPLATES_DIR = Path(__file__).parent / "templates" / "email"

env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
    trim_blocks=True,
    lstrip_blocks=True,
)

_session = requests.Session()


def _sender() -> str:
    return f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>"


def render(template_name: str, **context) -> str:
    context.setdefault("site_url", settings.SITE_URL)
    context.setdefault("site_name", settings.SITE_NAME)
    context.setdefault("year", datetime.now(timezone.utc).year)
    return env.get_template(template_name).render(**context)


def send_email(to: str, subject: str, html: str, text: Optional[str] = None) -> dict:
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not set; email to %s not sent (%s)", to, subject)
        return {"success": False, "error": "Email service is not configured"}

    payload = {
        "from": _sender(),
        "to": [to],
        "subject": subject,
        "html": html,
        "text": text or strip_html(html),
    }
    try:
        response = _session.post(
            RESEND_URL,
            json=payload,
            headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
            timeout=TIMEOUT,
        )
        response.raise_for_status()
        message_id = response.json().get("id")
    except (requests.RequestException, ValueError) as e:
        logger.error("Email sending failed for %s: %s", to, e)
        return {"success": False, "error": str(e)}

    return {"success": True, "message_id": message_id}


def send_bulk_emails(
    emails: list,
    on_progress: Optional[Callable[[dict], None]] = None,
    batch_size: int = BATCH_SIZE,
    delay: float = BATCH_DELAY,
) -> dict:
    """Send [{"to", "subject", "html", "text"?}] in batches, pausing between batches."""
    results = {"total": len(emails), "sent": 0, "failed": 0, "errors": []}

    for start in range(0, len(emails), batch_size):
        for email in emails[start:start + batch_size]:
            result = send_email(email["to"], email["subject"], email["html"], email.get("text"))
            if result["success"]:
                results["sent"] += 1
            else:
                results["failed"] += 1
                results["errors"].append({"email": email["to"], "error": result.get("error")})
            if on_progress:
                on_progress(
                    {
                        "current": results["sent"] + results["failed"],
                        "total": results["total"],
                        "sent": results["sent"],
                        "failed": results["failed"],
                    }
                )
        if start + batch_size < len(emails) and delay:
            time.sleep(delay)

    logger.info("Bulk send finished: %d sent, %d failed", results["sent"], results["failed"])
    return results


def unsubscribe_url(email: str, campaign_id: Optional[str] = None) -> str:
    url = f"{settings.SITE_URL}/api/newsletter/unsubscribe?email={quote(email)}"
    if campaign_id:
        url += f"&campaign={campaign_id}"
    return url


def click_url(campaign_id: str, email: str, target: str) -> str:
    return f"{settings.SITE_URL}/api/newsletter/track/click/{campaign_id}/{quote(email)}?url={quote(target, safe='')}"


def newsletter_html(campaign: dict, email: str, posts: list = ()) -> str:
    tracking = campaign.get("settings", {})
    campaign_id = str(campaign["_id"])
    open_pixel = None
    if tracking.get("track_opens", True):
        open_pixel = f"{settings.SITE_URL}/api/newsletter/track/open/{campaign_id}/{quote(email)}"

    links = []
    for post in posts:
        url = f"{settings.SITE_URL}/blog/{post['slug']}"
        if tracking.get("track_clicks", True):
            url = click_url(campaign_id, email, url)
        links.append({"title": post["title"], "excerpt": post.get("excerpt"), "url": url})

    return render(
        "newsletter.html",
        campaign=campaign,
        body=campaign.get("html_content") or campaign.get("content", ""),
        posts=links,
        open_pixel=open_pixel,
        unsubscribe_url=unsubscribe_url(email, campaign_id) if tracking.get("allow_unsubscribe", True) else None,
    )


def send_welcome_email(email: str) -> dict:
    html = render("welcome.html", unsubscribe_url=unsubscribe_url(email))
    return send_email(email, f"Welcome to the {settings.SITE_NAME} newsletter", html)


def send_password_reset_email(email: str, name: str, reset_url: str) -> dict:
    html = render("password_reset.html", name=name, reset_url=reset_url)
    return send_email(email, f"Reset your {settings.SITE_NAME} password", html)
