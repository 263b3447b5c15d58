"""
Platform connection endpoints
"""
import logging
from typing import Callable

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from social_inbox.api.dependencies import get_organization_id
from social_inbox.core.errors import ConflictError, NotFoundError
from social_inbox.db.database import get_db
from social_inbox.services.connection_service import ConnectionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/platforms", tags=["platforms"])

SyncEnqueuer = Callable[[str], str]


def enqueue_connection_sync(connection_id: str) -> str:
    from social_inbox.tasks.sync_tasks import sync_platform_connection

    return sync_platform_connection.apply_async(args=[connection_id], queue='sync').id


def get_sync_enqueuer() -> SyncEnqueuer:
    return enqueue_connection_sync


@router.post("/{connection_id}/sync")
async def trigger_connection_sync(
    connection_id: str,
    organization_id: str = Depends(get_organization_id),
    db: Session = Depends(get_db),
    enqueue: SyncEnqueuer = Depends(get_sync_enqueuer)
) -> JSONResponse:
    """
    Queue an immediate sync for one connection.

    Raises:
        NotFoundError: connection not in the caller's organization
        ConflictError: connection inactive or its token has expired
    """
    connection = ConnectionService(db).get(connection_id, organization_id=organization_id)
    if connection is None:
        raise NotFoundError(f"Connection {connection_id} not found")
    if not connection.is_active:
        raise ConflictError(f"Connection {connection_id} is inactive")
    if connection.status == "token_expired":
        raise ConflictError(
            f"Connection {connection_id} needs to be reconnected",
            details={"status": connection.status}
        )

    task_id = enqueue(connection.id)
    logger.info(f"Manual sync queued for connection {connection.id} ({connection.platform}): task {task_id}")
    return JSONResponse(
        status_code=202,
        content={"success": True, "task_id": task_id, "connection_id": connection.id, "platform": connection.platform}
    )
