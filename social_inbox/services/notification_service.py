"""
Notification Service

Persists in-app notifications and hands email delivery to the
notification queue. Email goes out through the configured SMTP relay;
without one, notifications stay in-app only.
"""
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from social_inbox.core.config import get_settings
from social_inbox.db.models import Notification, User, as_utc

logger = logging.getLogger(__name__)

DeliveryScheduler = Callable[[str], Any]


def schedule_delivery_task(notification_id: str):
    """Publish deliver_notification on the notification queue."""
    from social_inbox.tasks.notification_tasks import deliver_notification

    return deliver_notification.apply_async(
        args=[notification_id],
        queue="notification",
        retry=True,
        retry_policy={"max_retries": 3, "interval_start": 2, "interval_step": 2, "interval_max": 8}
    )


class EmailSender:
    """Plain SMTP sender"""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.smtp_host)

    def send(self, to_email: str, subject: str, body: str):
        msg = MIMEMultipart()
        msg['From'] = self.settings.notification_from_email
        msg['To'] = to_email
        msg['Subject'] = subject
        msg.attach(MIMEText(body, 'plain'))

        server = smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=30)
        try:
            if self.settings.smtp_use_tls:
                server.starttls()
            if self.settings.smtp_user:
                server.login(self.settings.smtp_user, self.settings.smtp_password)
            server.sendmail(self.settings.notification_from_email, [to_email], msg.as_string())
        finally:
            server.quit()

        logger.info(f"Email sent to {to_email}: {subject}")


class NotificationService:
    """In-app notifications with queued email delivery"""

    def __init__(self, db: Session, schedule_delivery: Optional[DeliveryScheduler] = None,
                 email_sender: Optional[EmailSender] = None):
        self.db = db
        self.schedule_delivery = schedule_delivery or schedule_delivery_task
        self.email_sender = email_sender or EmailSender()

    def notify(self, user: User, type: str, title: str, message: str,
               interaction_id: Optional[str] = None, post_id: Optional[str] = None,
               action_url: Optional[str] = None) -> Notification:
        """
        Create a notification for a user and queue its email delivery.

        Args:
            user: Recipient
            type: Notification type (assignment, negative_spike)
            title: Short title
            message: Body text
            interaction_id: Related interaction
            post_id: Related post, used to deduplicate spike alerts
            action_url: Deep link into the inbox

        Returns:
            The persisted Notification
        """
        notification = Notification(
            user_id=user.id,
            organization_id=user.organization_id,
            type=type,
            title=title,
            message=message,
            interaction_id=interaction_id,
            post_id=post_id,
            action_url=action_url,
        )
        self.db.add(notification)
        self.db.commit()
        logger.info(f"Created {type} notification {notification.id} for user {user.id}")

        try:
            self.schedule_delivery(notification.id)
        except Exception as e:
            # The in-app notification stands even if email cannot be queued
            logger.error(f"Could not queue email delivery for notification {notification.id}: {e}")
        return notification

    def find_recent(self, organization_id: str, type: str, post_id: str, since: datetime) -> Optional[Notification]:
        candidates = self.db.query(Notification).filter(
            Notification.organization_id == organization_id,
            Notification.type == type,
            Notification.post_id == post_id
        ).order_by(Notification.created_at.desc()).all()
        for notification in candidates:
            created_at = as_utc(notification.created_at)
            if created_at is not None and created_at >= since:
                return notification
        return None

    def deliver(self, notification_id: str) -> bool:
        """
        Send the notification by email.

        Returns:
            True when an email was sent (now or previously)

        Raises:
            smtplib.SMTPException, OSError: relay failure; recorded on the notification
        """
        notification = self.db.query(Notification).filter(Notification.id == notification_id).first()
        if notification is None:
            logger.warning(f"Notification {notification_id} not found for delivery")
            return False
        if notification.email_sent:
            return True
        if not self.email_sender.enabled:
            logger.debug(f"SMTP not configured; notification {notification_id} stays in-app")
            return False

        user = notification.user
        if user is None or not user.email:
            logger.warning(f"Notification {notification_id} has no recipient email")
            return False

        body = notification.message
        if notification.action_url:
            body = f"{body}\n\n{notification.action_url}"

        try:
            self.email_sender.send(user.email, notification.title, body)
        except (smtplib.SMTPException, OSError) as e:
            notification.delivery_error = str(e)
            self.db.commit()
            logger.error(f"Email delivery failed for notification {notification_id}: {e}")
            raise

        notification.email_sent = True
        notification.email_sent_at = datetime.now(timezone.utc)
        notification.delivery_error = None
        self.db.commit()
        return True
