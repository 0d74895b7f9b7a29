"""
Newsletter subscriptions and transactional email

Mail goes out through the Resend HTTP API. Without RESEND_API_KEY nothing is
sent and the message is only logged.
"""
import os
import uuid
from typing import Optional

import requests
import structlog
from pymongo.errors import PyMongoError

from database import RecordNotFound, RecordStore
from filters import Field
from schemas import ActionResult, Notification, NotificationUpdate

logger = structlog.get_logger(__name__)

RESEND_API_KEY = os.getenv("RESEND_API_KEY")
RESEND_URL = "https://api.resend.com/emails"
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "onboarding@resend.dev")
PUBLIC_URL = os.getenv("PUBLIC_URL", "http://localhost:8000")


class EmailError(Exception):
    pass


def send_email(to: str, subject: str, html: str) -> Optional[str]:
    """Send one email, returns the provider's message id (None when disabled)."""
    if not RESEND_API_KEY:
        logger.info("email_skipped", to=to, subject=subject)
        return None
    resp = requests.post(
        RESEND_URL,
        headers={"Authorization": f"Bearer {RESEND_API_KEY}"},
        json={"from": EMAIL_FROM_ADDRESS, "to": [to], "subject": subject, "html": html},
        timeout=10,
    )
    if resp.status_code >= 300:
        raise EmailError(resp.text)
    message_id = resp.json().get("id")
    logger.info("email_sent", to=to, subject=subject, message_id=message_id)
    return message_id


def welcome_email(token: str) -> str:
    link = f"{PUBLIC_URL}/email-preferences?token={token}"
    return (
        "<p>Thanks for joining our newsletter!</p>"
        "<p>You will hear from us about new drops and stores.</p>"
        f'<p><a href="{link}">Manage your email preferences</a></p>'
    )


def subscribe_newsletter(
    records: RecordStore, email: str, token: Optional[str] = None, subject: Optional[str] = None
) -> Optional[dict]:
    """Opt the address in and send the welcome mail. None when the record could not be saved."""
    try:
        existing = records.get_first("notification", Field("email") == email)
        if existing:
            notification = records.update("notification", existing["id"], {"newsletter": True})
        else:
            notification = records.create("notification", Notification(
                email=email,
                token=token or uuid.uuid4().hex,
                newsletter=True,
            ))
    except (PyMongoError, RecordNotFound) as e:
        logger.error("newsletter_subscribe_failed", email=email, error=str(e))
        return None
    send_email(email, subject or "Welcome to the newsletter", welcome_email(notification["token"]))
    return notification


def get_notification(records: RecordStore, token: str) -> Optional[dict]:
    try:
        return records.get_first("notification", Field("token") == token)
    except PyMongoError as e:
        logger.error("notification_fetch_failed", error=str(e))
        return None


def update_notification(records: RecordStore, data: NotificationUpdate) -> ActionResult:
    changes = data.model_dump(exclude_none=True, exclude={"token"})
    try:
        notification = records.get_first("notification", Field("token") == data.token)
        if notification is None:
            return ActionResult(success=False, error="Notification not found")
        records.update("notification", notification["id"], changes)
    except PyMongoError as e:
        logger.error("notification_update_failed", error=str(e))
        return ActionResult(success=False, error="Failed to update notification preferences")
    return ActionResult(success=True, id=notification["id"])
