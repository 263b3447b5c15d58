"""
Dead-letter watchdog tasks
"""
import logging
from typing import Any, Dict

from social_inbox.core.dead_letters import DeadLetterLedger
from social_inbox.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name='social_inbox.tasks.dead_letter_tasks.scan_dead_letters', bind=True)
def scan_dead_letters(self) -> Dict[str, Any]:
    """Log the open dead letters so permanently failed work stays visible."""
    task_id = self.request.id or "manual"
    with DeadLetterLedger() as ledger:
        summary = ledger.summary()

    logger.info(
        f"Dead-letter scan {task_id}: open={summary['open']}, "
        f"last_24h={summary['failed_last_24h']}, needs_review={summary['needs_review']}"
    )
    if summary['needs_review']:
        logger.warning(f"{summary['needs_review']} dead-lettered tasks need operator review")
    for queue, count in summary['by_queue'].items():
        logger.info(f"Dead letters on {queue}: {count}")

    return {"status": "completed", "task_id": task_id, "summary": summary}
