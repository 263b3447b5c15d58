"""
Celery tasks for AI enrichment and routing
"""
import asyncio
import logging
from typing import Any, Dict

from social_inbox.core.logging import get_logger
from social_inbox.services.enrichment_service import EnrichmentPipeline
from social_inbox.tasks.celery_app import celery_app
from social_inbox.tasks.db_session_manager import get_celery_db_session
from social_inbox.tasks.retry import retry_or_dead_letter

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name='social_inbox.tasks.enrichment_tasks.enrich_interaction',
    acks_late=True,
    reject_on_worker_lost=True
)
def enrich_interaction(self, interaction_id: str) -> Dict[str, Any]:
    """Classify, draft and route one newly ingested interaction."""
    task_logger = get_logger(__name__, task_id=self.request.id, interaction_id=interaction_id, queue='enrichment')
    organization_id = None
    try:
        with get_celery_db_session() as db:
            pipeline = EnrichmentPipeline(db)
            interaction = asyncio.run(pipeline.enrich(interaction_id))
            organization_id = interaction.organization_id
            outcome = pipeline.last_outcome

        return {
            "status": "success",
            "task_id": self.request.id,
            "interaction_id": interaction_id,
            "routing": outcome.to_dict() if outcome else None,
        }

    except Exception as e:
        task_logger.error(f"Error enriching interaction {interaction_id}: {e}")
        return retry_or_dead_letter(
            self, e, queue_name='enrichment', organization_id=organization_id, task_args=(interaction_id,)
        )
