"""
Celery tasks for notification delivery
"""
import logging
from typing import Any, Dict

from social_inbox.services.notification_service import NotificationService
from social_inbox.tasks.celery_app import celery_app
from social_inbox.tasks.db_session_manager import get_celery_db_session
from social_inbox.tasks.retry import retry_or_dead_letter

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name='social_inbox.tasks.notification_tasks.deliver_notification',
    acks_late=True
)
def deliver_notification(self, notification_id: str) -> Dict[str, Any]:
    try:
        with get_celery_db_session() as db:
            sent = NotificationService(db).deliver(notification_id)
        return {"status": "success", "task_id": self.request.id, "notification_id": notification_id, "email_sent": sent}

    except Exception as e:
        logger.error(f"Error delivering notification {notification_id}: {e}")
        return retry_or_dead_letter(self, e, queue_name='notification', task_args=(notification_id,))
