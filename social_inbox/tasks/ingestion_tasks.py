"""
Celery tasks for webhook ingestion
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from social_inbox.core.logging import get_logger
from social_inbox.services.connection_service import ConnectionService
from social_inbox.services.ingestion_service import IngestionDispatcher
from social_inbox.tasks.celery_app import celery_app
from social_inbox.tasks.db_session_manager import get_celery_db_session
from social_inbox.tasks.retry import retry_or_dead_letter

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name='social_inbox.tasks.ingestion_tasks.process_webhook_event',
    acks_late=True,
    reject_on_worker_lost=True
)
def process_webhook_event(self, platform: str, payload: Dict[str, Any], organization_id: str,
                          connection_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Normalize and persist one webhook payload, then schedule enrichment.

    Args:
        platform: Platform identifier
        payload: Webhook body as received
        organization_id: Tenant resolved by the receiver
        connection_id: Owning connection resolved by the receiver
    """
    task_logger = get_logger(__name__, task_id=self.request.id, platform=platform,
                             organization_id=organization_id, queue='ingestion')
    try:
        with get_celery_db_session() as db:
            connection = ConnectionService(db).get(connection_id) if connection_id else None
            dispatcher = IngestionDispatcher(db)
            interactions = asyncio.run(
                dispatcher.dispatch(platform, payload, organization_id, connection=connection)
            )
            interaction_ids = [interaction.id for interaction in interactions]

        task_logger.info(f"Processed {platform} webhook: {len(interaction_ids)} interactions")
        return {
            "status": "success",
            "task_id": self.request.id,
            "platform": platform,
            "interaction_ids": interaction_ids,
        }

    except Exception as e:
        task_logger.error(f"Error processing {platform} webhook: {e}")
        return retry_or_dead_letter(
            self, e, queue_name='ingestion', organization_id=organization_id,
            task_args=(platform, payload, organization_id, connection_id)
        )
