"""
Shared retry policy for pipeline tasks

Retryable failures are retried with exponential backoff, 2s then 4s across
three executions by default. Once attempts run out, or for failures that
cannot heal on their own, the task is recorded in the dead-letter ledger.
"""
import logging
import traceback
from typing import Any, Dict, Optional

from social_inbox.core.config import get_settings
from social_inbox.core.dead_letters import dead_letter
from social_inbox.core.errors import InboxError

logger = logging.getLogger(__name__)


def is_retryable_error(error: Exception) -> bool:
    """Typed pipeline errors declare retryability; unexpected errors are retried."""
    if isinstance(error, InboxError):
        return error.retryable
    return True


def retry_countdown(retries: int) -> int:
    return get_settings().task_retry_backoff_seconds * (2 ** retries)


def retry_or_dead_letter(task, error: Exception, queue_name: str,
                         organization_id: Optional[str] = None,
                         task_args: Optional[tuple] = None) -> Dict[str, Any]:
    """
    Retry the task or move it to the DLQ.

    Raises:
        celery.exceptions.Retry: when another attempt is scheduled

    Returns:
        Failure summary once the task is dead-lettered
    """
    max_attempts = get_settings().task_max_attempts
    retries = task.request.retries
    attempts = retries + 1

    if is_retryable_error(error) and attempts < max_attempts:
        countdown = retry_countdown(retries)
        logger.warning(
            f"Retrying {task.name}: task_id={task.request.id}, attempt={attempts + 1}/{max_attempts}, "
            f"delay={countdown}s, error={error}"
        )
        raise task.retry(exc=error, countdown=countdown, max_retries=max_attempts - 1)

    dead_letter(
        task_id=task.request.id,
        task_name=task.name,
        queue=queue_name,
        error=error,
        traceback="".join(traceback.format_exception(type(error), error, error.__traceback__)),
        attempts=attempts,
        organization_id=organization_id,
        args=task_args
    )
    logger.error(
        f"{task.name} failed permanently: task_id={task.request.id}, "
        f"attempts={attempts}, error={error}, dead_lettered=True"
    )
    return {
        "status": "failed",
        "task_id": task.request.id,
        "error": str(error),
        "attempts": attempts,
        "dead_lettered": True,
    }
