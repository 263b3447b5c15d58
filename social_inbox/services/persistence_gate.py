"""
Deduplication & Persistence Gate

Idempotent upsert of normalized drafts keyed by
(organization_id, platform, platform_id). A redelivered item never creates
a second row; only platform-owned fields are refreshed on a repeat sighting.
The unique constraint is the final guard against concurrent inserts.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from social_inbox.core import metrics
from social_inbox.core.errors import PersistenceError
from social_inbox.db.models import Interaction
from social_inbox.integrations.base import InteractionDraft

logger = logging.getLogger(__name__)

# Columns copied from a draft when the interaction is first seen
_CREATE_FIELDS = (
    "organization_id", "connection_id", "platform", "type", "platform_id", "platform_url",
    "content", "content_type", "language",
    "author_platform_id", "author_name", "author_username", "author_profile_url",
    "author_avatar_url", "author_verified",
    "parent_id", "thread_id", "reply_count", "has_replies", "post_id", "platform_metadata",
    "rating", "review_date", "sentiment", "platform_created_at", "platform_updated_at",
)


@dataclass
class UpsertResult:
    created: bool
    interaction: Interaction


class InteractionRepository:
    """Storage access for interactions"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, interaction_id: str, organization_id: Optional[str] = None) -> Optional[Interaction]:
        query = self.db.query(Interaction).filter(Interaction.id == interaction_id)
        if organization_id is not None:
            query = query.filter(Interaction.organization_id == organization_id)
        return query.first()

    def find_by_identity(self, organization_id: str, platform: str, platform_id: str) -> Optional[Interaction]:
        return self.db.query(Interaction).filter(
            Interaction.organization_id == organization_id,
            Interaction.platform == platform,
            Interaction.platform_id == platform_id
        ).first()

    def upsert(self, draft: InteractionDraft) -> UpsertResult:
        """
        Insert the draft or merge it into the existing interaction.

        Args:
            draft: Normalized interaction from a platform adapter

        Returns:
            UpsertResult with created=True only for a brand-new row

        Raises:
            PersistenceError: storage unavailable
        """
        try:
            existing = self.find_by_identity(draft.organization_id, draft.platform, draft.platform_id)
            if existing is not None:
                return self._merged(existing, draft)

            interaction = Interaction(
                status="unread",
                is_read=False,
                **{name: getattr(draft, name) for name in _CREATE_FIELDS}
            )
            try:
                with self.db.begin_nested():
                    self.db.add(interaction)
            except IntegrityError:
                # Lost an insert race; the committed row wins
                winner = self.find_by_identity(draft.organization_id, draft.platform, draft.platform_id)
                if winner is None:
                    raise PersistenceError(
                        f"Unique violation for {draft.platform}:{draft.platform_id} but no row found"
                    )
                logger.info(f"Concurrent insert for {draft.platform}:{draft.platform_id}, using existing row")
                return self._merged(winner, draft)

            self.db.commit()
            metrics.interactions_ingested_total.labels(platform=draft.platform, outcome="created").inc()
            logger.info(f"Created interaction {interaction.id} ({draft.platform}:{draft.platform_id})")
            return UpsertResult(created=True, interaction=interaction)

        except OperationalError as e:
            self.db.rollback()
            raise PersistenceError(f"Storage unavailable: {e}") from e

    def _merged(self, existing: Interaction, draft: InteractionDraft) -> UpsertResult:
        changes = self._merge_values(existing, draft)
        for name, value in changes.items():
            setattr(existing, name, value)
        self.db.commit()
        metrics.interactions_ingested_total.labels(platform=draft.platform, outcome="duplicate").inc()
        if changes:
            logger.debug(f"Merged {sorted(changes)} into interaction {existing.id}")
        return UpsertResult(created=False, interaction=existing)

    @staticmethod
    def _merge_values(existing: Interaction, draft: InteractionDraft) -> Dict[str, Any]:
        """Platform-owned fields that changed; enrichment and workflow fields are never touched."""
        changes: Dict[str, Any] = {}
        if draft.content and draft.content != existing.content:
            changes["content"] = draft.content
        if draft.rating is not None and draft.rating != existing.rating:
            changes["rating"] = draft.rating
        if draft.reply_count and draft.reply_count != existing.reply_count:
            changes["reply_count"] = draft.reply_count
            changes["has_replies"] = draft.has_replies
        if draft.platform_updated_at is not None and draft.platform_updated_at != existing.platform_updated_at:
            changes["platform_updated_at"] = draft.platform_updated_at
        if draft.platform_metadata:
            merged = {**(existing.platform_metadata or {}), **draft.platform_metadata}
            if merged != existing.platform_metadata:
                changes["platform_metadata"] = merged
        return changes

    def update_fields(self, interaction_id: str, values: Dict[str, Any]) -> int:
        """
        Field-scoped UPDATE: writes only the given columns.

        Returns:
            Number of rows updated
        """
        try:
            updated = self.db.query(Interaction).filter(Interaction.id == interaction_id).update(
                values, synchronize_session="fetch"
            )
            self.db.commit()
            return updated
        except OperationalError as e:
            self.db.rollback()
            raise PersistenceError(f"Storage unavailable: {e}") from e
