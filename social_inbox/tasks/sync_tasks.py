"""
Celery tasks for pulling interactions from connected platforms
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from social_inbox.core.config import get_settings
from social_inbox.core.logging import get_logger
from social_inbox.db.models import PlatformConnection, as_utc
from social_inbox.services.connection_service import ConnectionService
from social_inbox.services.ingestion_service import IngestionDispatcher
from social_inbox.tasks.celery_app import celery_app
from social_inbox.tasks.db_session_manager import get_celery_db_session
from social_inbox.tasks.retry import retry_or_dead_letter

logger = logging.getLogger(__name__)


def is_sync_due(connection: PlatformConnection, now: Optional[datetime] = None) -> bool:
    """A connection is due once its sync interval has elapsed since the last run."""
    last_sync_at = as_utc(connection.last_sync_at)
    if last_sync_at is None:
        return True
    interval = (connection.settings or {}).get("sync_interval_minutes") or get_settings().sync_interval_minutes
    now = now or datetime.now(timezone.utc)
    return last_sync_at + timedelta(minutes=interval) <= now


@celery_app.task(
    bind=True,
    name='social_inbox.tasks.sync_tasks.sync_platform_connection',
    acks_late=True
)
def sync_platform_connection(self, connection_id: str) -> Dict[str, Any]:
    """
    Run one sync pass for a connection.

    The dispatcher records sync statistics itself, so a failed run is
    reported in the result rather than retried.
    """
    task_logger = get_logger(__name__, task_id=self.request.id, connection_id=connection_id, queue='sync')
    organization_id = None
    try:
        with get_celery_db_session() as db:
            connection = ConnectionService(db).get(connection_id)
            if connection is None or not connection.is_active:
                task_logger.warning(f"Connection {connection_id} not found or inactive, skipping sync")
                return {"status": "skipped", "task_id": self.request.id, "connection_id": connection_id}

            organization_id = connection.organization_id
            report = asyncio.run(IngestionDispatcher(db).sync_connection(connection))

        return {
            "status": "success" if report.success else "failed",
            "task_id": self.request.id,
            **report.to_dict(),
        }

    except Exception as e:
        task_logger.error(f"Error syncing connection {connection_id}: {e}")
        return retry_or_dead_letter(
            self, e, queue_name='sync', organization_id=organization_id, task_args=(connection_id,)
        )


@celery_app.task(name='social_inbox.tasks.sync_tasks.sync_all_connections')
def sync_all_connections() -> Dict[str, Any]:
    """Enqueue a sync for every auto-sync connection whose interval has elapsed."""
    queued = []
    with get_celery_db_session() as db:
        connections = ConnectionService(db).list_auto_sync()
        now = datetime.now(timezone.utc)
        due_ids = [connection.id for connection in connections if is_sync_due(connection, now)]

    for connection_id in due_ids:
        try:
            sync_platform_connection.apply_async(args=[connection_id], queue='sync')
            queued.append(connection_id)
        except Exception as e:
            logger.error(f"Could not enqueue sync for connection {connection_id}: {e}")

    logger.info(f"Scheduled sync for {len(queued)} of {len(connections)} auto-sync connections")
    return {"status": "completed", "queued": queued, "candidates": len(connections)}
