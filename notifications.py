import logging
from typing import Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = {
    "like_post",
    "comment_post",
    "reply_comment",
    "like_comment",
    "follow",
    "post_approved",
    "post_rejected",
}


def notify(
    db: Database,
    recipient_id,
    sender_id,
    type: str,
    message: str,
    post_id=None,
    comment_id=None,
    link: Optional[str] = None,
) -> Optional[str]:
    """Store a notification for `recipient_id`. Self-notifications are skipped.

    Failures are logged and swallowed; a notification is never worth failing
    the action that caused it.
    """
    if recipient_id is None or str(recipient_id) == str(sender_id):
        return None
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {type}")
    try:
        return create_document(
            db,
            "notification",
            {
                "recipient_id": recipient_id,
                "sender_id": sender_id,
                "type": type,
                "post_id": post_id,
                "comment_id": comment_id,
                "message": message,
                "link": link,
                "is_read": False,
            },
        )
    except PyMongoError:
        logger.exception("Failed to create %s notification", type)
        return None
