"""
Inbox workflow operations performed by agents on interactions
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from social_inbox.core.errors import ConflictError, NotFoundError
from social_inbox.db.models import Interaction, User
from social_inbox.integrations.registry import AdapterRegistry
from social_inbox.services.connection_service import ConnectionService
from social_inbox.services.persistence_gate import InteractionRepository

logger = logging.getLogger(__name__)

MAX_REPLY_LENGTH = 5000


class InboxService:
    """Workflow transitions on interactions, scoped to one organization"""

    def __init__(self, db: Session, organization_id: str, registry: Optional[AdapterRegistry] = None):
        self.db = db
        self.organization_id = organization_id
        self.registry = registry or AdapterRegistry()
        self.repository = InteractionRepository(db)
        self.connections = ConnectionService(db)

    def get(self, interaction_id: str) -> Interaction:
        interaction = self.repository.get(interaction_id, organization_id=self.organization_id)
        if interaction is None:
            raise NotFoundError(f"Interaction {interaction_id} not found")
        return interaction

    def mark_as_read(self, interaction_id: str) -> Interaction:
        interaction = self.get(interaction_id)
        if not interaction.is_read:
            interaction.is_read = True
            interaction.read_at = datetime.now(timezone.utc)
            if interaction.status == "unread":
                interaction.status = "read"
            self.db.commit()
        return interaction

    def assign_to(self, interaction_id: str, user_id: int, reason: str = "manual") -> Interaction:
        interaction = self.get(interaction_id)
        user = self.db.query(User).filter(
            User.id == user_id,
            User.organization_id == self.organization_id,
            User.is_active.is_(True)
        ).first()
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        if interaction.status in ("resolved", "archived"):
            raise ConflictError(f"Cannot assign a {interaction.status} interaction")

        interaction.assigned_to = user.id
        interaction.assigned_at = datetime.now(timezone.utc)
        interaction.assignment_reason = reason
        interaction.status = "assigned"
        self.db.commit()
        logger.info(f"Interaction {interaction.id} assigned to user {user.id} ({reason})")
        return interaction

    def resolve(self, interaction_id: str) -> Interaction:
        interaction = self.get(interaction_id)
        if interaction.status == "archived":
            raise ConflictError("Cannot resolve an archived interaction")
        interaction.status = "resolved"
        interaction.resolved_at = datetime.now(timezone.utc)
        self.db.commit()
        return interaction

    def archive(self, interaction_id: str) -> Interaction:
        interaction = self.get(interaction_id)
        interaction.status = "archived"
        self.db.commit()
        return interaction

    def add_label(self, interaction_id: str, label: str) -> Interaction:
        interaction = self.get(interaction_id)
        labels = list(interaction.labels or [])
        if label not in labels:
            interaction.labels = labels + [label]
            self.db.commit()
        return interaction

    def add_internal_note(self, interaction_id: str, content: str, added_by: Optional[int] = None) -> Interaction:
        if not content or not content.strip():
            raise ConflictError("Note content is required")
        interaction = self.get(interaction_id)
        note = {
            "content": content.strip(),
            "added_by": added_by,
            "added_at": datetime.now(timezone.utc).isoformat(),
        }
        interaction.internal_notes = list(interaction.internal_notes or []) + [note]
        self.db.commit()
        return interaction

    async def send_reply(self, interaction_id: str, content: str, sent_by: Optional[int] = None,
                         is_auto_reply: bool = False) -> Dict[str, Any]:
        """
        Post a reply on the platform and record it in the reply log.

        Raises:
            NotFoundError: unknown interaction
            ConflictError: empty/oversized reply, archived interaction, or no usable connection
            AuthError: platform credentials expired
            PlatformAPIError: platform rejected the reply
        """
        content = (content or "").strip()
        if not content:
            raise ConflictError("Reply content is required")
        if len(content) > MAX_REPLY_LENGTH:
            raise ConflictError(f"Reply exceeds {MAX_REPLY_LENGTH} characters")

        interaction = self.get(interaction_id)
        if interaction.status == "archived":
            raise ConflictError("Cannot reply to an archived interaction")

        connection = interaction.connection or self.connections.find_active(self.organization_id, interaction.platform)
        if connection is None or not connection.is_active:
            raise ConflictError(f"No active {interaction.platform} connection")

        adapter = self.registry.get(interaction.platform)
        await self.connections.ensure_valid_token(connection, adapter)
        response = await adapter.post_reply(connection, interaction, content)

        reply = {
            "content": content,
            "sent_by": sent_by,
            "sent_at": datetime.now(timezone.utc).isoformat(),
            "is_auto_reply": is_auto_reply,
            "platform_response_id": response.get("platform_response_id"),
        }
        interaction.replies = list(interaction.replies or []) + [reply]
        interaction.status = "replied"
        if not interaction.is_read:
            interaction.is_read = True
            interaction.read_at = datetime.now(timezone.utc)
        self.db.commit()

        logger.info(f"Replied to interaction {interaction.id} on {interaction.platform}")
        return reply
