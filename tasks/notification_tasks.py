"""
tasks/notification_tasks.py
Email copies of in-app notifications, delivered through Resend.

Idempotent: a notification already marked sent_email is skipped.

Usage (queued after commit by services.notification.service):
    send_notification_email.delay(str(notification.id))
"""

import logging
import uuid
from html import escape

import resend
from sqlalchemy import select

from config.settings import settings
from shared.models.models import Notification, NotificationType, Profile
from tasks.base import DatabaseTask
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


SUBJECTS = {
    NotificationType.AD_REJECTED.value: "Your ad was not approved",
    NotificationType.VERIFICATION_APPROVED.value: "You are now a verified seller",
    NotificationType.VERIFICATION_REJECTED.value: "Your verification request was not approved",
    NotificationType.ACCOUNT_SUSPENDED.value: "Your account has been suspended",
}


def _send_email(to_email: str, subject: str, html_body: str) -> bool:
    """Send transactional email via Resend. Returns True on success."""
    try:
        resend.api_key = settings.RESEND_API_KEY
        resend.Emails.send({
            "from": f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM}>",
            "to": to_email,
            "subject": subject,
            "html": html_body,
        })
        return True
    except Exception as e:
        logger.warning(f"Email send failed: {e}")
        return False


def render_email(notification: Notification, profile: Profile) -> tuple[str, str]:
    subject = SUBJECTS.get(notification.type, settings.APP_NAME)
    body = f"<p>Hi {escape(profile.full_name)},</p><p>{escape(notification.message)}</p>"
    if notification.link:
        url = f"{settings.FRONTEND_URL.rstrip('/')}{notification.link}"
        body += f'<p><a href="{escape(url)}">Open {settings.EMAIL_FROM_NAME}</a></p>'
    return subject, body


@celery_app.task(bind=True, base=DatabaseTask, max_retries=3, default_retry_delay=60)
def send_notification_email(self, notification_id: str):
    """Email a copy of one notification to its owner, with retry on failure."""
    db = self.get_session()
    try:
        row = db.execute(
            select(Notification, Profile)
            .join(Profile, Profile.id == Notification.user_id)
            .where(Notification.id == uuid.UUID(notification_id))
        ).first()
        if not row:
            logger.error(f"send_notification_email: notification {notification_id} not found")
            return
        notification, profile = row
        if notification.sent_email:
            return

        subject, body = render_email(notification, profile)
        if not _send_email(profile.email, subject, body):
            raise self.retry(countdown=60 * (2 ** self.request.retries))

        notification.sent_email = True
        db.commit()
        logger.info(f"Emailed notification {notification_id} to {profile.id}")
    finally:
        db.close()
