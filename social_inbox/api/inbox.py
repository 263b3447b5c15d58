"""
Inbox endpoints for agents working interactions
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from social_inbox.api.dependencies import get_organization_id
from social_inbox.db.database import get_db
from social_inbox.integrations.registry import AdapterRegistry
from social_inbox.services.inbox_service import MAX_REPLY_LENGTH, InboxService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/inbox", tags=["inbox"])


def get_registry() -> AdapterRegistry:
    return AdapterRegistry()


class ReplyRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=MAX_REPLY_LENGTH)
    sent_by: Optional[int] = None


@router.post("/{interaction_id}/reply")
async def reply_to_interaction(
    interaction_id: str,
    request: ReplyRequest,
    organization_id: str = Depends(get_organization_id),
    db: Session = Depends(get_db),
    registry: AdapterRegistry = Depends(get_registry)
):
    """Post a reply on the interaction's platform."""
    service = InboxService(db, organization_id, registry=registry)
    reply = await service.send_reply(interaction_id, request.content, sent_by=request.sent_by)
    return {"success": True, "interaction_id": interaction_id, "reply": reply}
