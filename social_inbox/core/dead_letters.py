"""
Dead-letter ledger

Pipeline tasks that run out of retries, or fail in a way retrying cannot
fix, land in the ``dead_letters`` table. Operators review the ledger,
requeue what can be replayed and watch its growth through the hourly scan.
"""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from social_inbox.core.errors import (
    AdapterError, AuthError, EnrichmentError, InboxError, PersistenceError, PlatformAPIError
)
from social_inbox.db.database import SessionLocal
from social_inbox.db.models import DeadLetter

logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTH_ERROR = "auth_error"
    NETWORK_ERROR = "network_error"
    INVALID_DATA = "invalid_data"
    EXTERNAL_API_ERROR = "external_api_error"
    PERSISTENCE_ERROR = "persistence_error"
    INTERNAL_ERROR = "internal_error"


# Kinds that will fail again on replay until someone fixes data or credentials
REVIEW_KINDS = frozenset({FailureKind.AUTH_ERROR, FailureKind.INVALID_DATA, FailureKind.INTERNAL_ERROR})

_TYPED_KINDS = (
    (AuthError, FailureKind.AUTH_ERROR),
    (AdapterError, FailureKind.INVALID_DATA),
    (PersistenceError, FailureKind.PERSISTENCE_ERROR),
    ((EnrichmentError, PlatformAPIError), FailureKind.EXTERNAL_API_ERROR),
)

_TIMEOUT_TYPES = ("TimeoutError", "ConnectTimeout", "ReadTimeout")
_NETWORK_TYPES = ("ConnectionError", "ConnectError")


def classify_failure(error: Exception) -> FailureKind:
    """Map an exception onto a FailureKind, typed pipeline errors first."""
    for types, kind in _TYPED_KINDS:
        if isinstance(error, types):
            return kind

    name = type(error).__name__
    text = str(error).lower()
    if name in _TIMEOUT_TYPES or "timeout" in text:
        return FailureKind.TIMEOUT
    if "rate limit" in text or "too many requests" in text:
        return FailureKind.RATE_LIMIT
    if name in _NETWORK_TYPES or "connection" in text or "network" in text:
        return FailureKind.NETWORK_ERROR
    if isinstance(error, (InboxError, ValueError)):
        return FailureKind.INVALID_DATA
    return FailureKind.INTERNAL_ERROR


class DeadLetterLedger:
    """Read and write access to dead-lettered tasks"""

    def __init__(self, db: Optional[Session] = None):
        self._owns_session = db is None
        self.db = db or SessionLocal()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._owns_session:
            self.db.close()

    def record(self, task_id: str, task_name: str, queue: str, kind: FailureKind, error: str,
               args: Optional[tuple] = None, kwargs: Optional[dict] = None,
               traceback: Optional[str] = None, organization_id: Optional[str] = None,
               attempts: int = 0, context: Optional[Dict[str, Any]] = None) -> DeadLetter:
        """
        Add a task to the ledger, or refresh its entry when the same task id
        fails again after a requeue.
        """
        now = datetime.now(timezone.utc)
        entry = self.db.query(DeadLetter).filter(DeadLetter.task_id == task_id).first()
        if entry is None:
            entry = DeadLetter(
                task_id=task_id,
                task_name=task_name,
                queue=queue,
                organization_id=organization_id,
                args=list(args) if args else None,
                kwargs=dict(kwargs) if kwargs else None,
                failed_at=now,
            )
            self.db.add(entry)

        entry.kind = kind.value
        entry.error = error
        entry.traceback = traceback
        entry.attempts = attempts
        entry.needs_review = kind in REVIEW_KINDS
        entry.last_failed_at = now
        entry.requeued_at = None
        if context:
            entry.context = {**(entry.context or {}), **context}

        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Dead-lettered {task_name} task {task_id} on {queue}: {kind.value}")
        return entry

    def pending(self, queue: Optional[str] = None, organization_id: Optional[str] = None,
                needs_review: Optional[bool] = None, limit: int = 100) -> List[DeadLetter]:
        """Entries not yet requeued, newest first."""
        query = self.db.query(DeadLetter).filter(DeadLetter.requeued_at.is_(None))
        if queue:
            query = query.filter(DeadLetter.queue == queue)
        if organization_id is not None:
            query = query.filter(DeadLetter.organization_id == organization_id)
        if needs_review is not None:
            query = query.filter(DeadLetter.needs_review.is_(needs_review))
        return query.order_by(DeadLetter.last_failed_at.desc()).limit(limit).all()

    def mark_requeued(self, task_id: str) -> bool:
        entry = self.db.query(DeadLetter).filter(DeadLetter.task_id == task_id).first()
        if entry is None:
            logger.warning(f"No dead letter for task {task_id}")
            return False
        entry.requeued_at = datetime.now(timezone.utc)
        self.db.commit()
        return True

    def summary(self) -> Dict[str, Any]:
        """Counts for the watchdog scan."""
        open_entries = self.db.query(DeadLetter).filter(DeadLetter.requeued_at.is_(None))
        since = datetime.now(timezone.utc) - timedelta(hours=24)

        by_queue = self.db.query(DeadLetter.queue, func.count(DeadLetter.id)).filter(
            DeadLetter.requeued_at.is_(None)
        ).group_by(DeadLetter.queue).all()
        by_kind = self.db.query(DeadLetter.kind, func.count(DeadLetter.id)).filter(
            DeadLetter.requeued_at.is_(None)
        ).group_by(DeadLetter.kind).all()

        return {
            "open": open_entries.count(),
            "needs_review": open_entries.filter(DeadLetter.needs_review.is_(True)).count(),
            "failed_last_24h": self.db.query(DeadLetter).filter(DeadLetter.last_failed_at >= since).count(),
            "by_queue": dict(by_queue),
            "by_kind": dict(by_kind),
        }


def dead_letter(task_id: str, task_name: str, queue: str, error: Exception, traceback: str = "",
                attempts: int = 0, organization_id: Optional[str] = None,
                args: Optional[tuple] = None, kwargs: Optional[dict] = None):
    """
    Record a failed task on its own session.

    A ledger write failure is logged and swallowed so that it never masks
    the task's original error.
    """
    kind = classify_failure(error)
    try:
        with DeadLetterLedger() as ledger:
            ledger.record(
                task_id=task_id,
                task_name=task_name,
                queue=queue,
                kind=kind,
                error=str(error),
                args=args,
                kwargs=kwargs,
                traceback=traceback,
                organization_id=organization_id,
                attempts=attempts,
                context={"error_type": type(error).__name__, "error_code": getattr(error, "code", None)},
            )
    except Exception as ledger_error:
        logger.error(f"Could not dead-letter task {task_id} ({kind.value}): {ledger_error}")
