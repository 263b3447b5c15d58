"""
Per-task database sessions

Each task run gets its own session: committed when the body finishes,
rolled back when it raises, closed either way so worker processes do not
hold pooled connections between tasks.
"""
import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session

from social_inbox.db.database import SessionLocal

logger = logging.getLogger(__name__)


@contextmanager
def get_celery_db_session() -> Generator[Session, None, None]:
    """
    Usage::

        with get_celery_db_session() as db:
            connections = ConnectionService(db).list_auto_sync()
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        logger.error(f"Rolling back task session after {type(e).__name__}: {e}")
        db.rollback()
        raise
    finally:
        db.close()
