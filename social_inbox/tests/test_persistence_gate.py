"""
Tests for the deduplication & persistence gate
"""
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from social_inbox.core.errors import PersistenceError
from social_inbox.db.models import Interaction
from social_inbox.integrations.base import InteractionDraft
from social_inbox.services.persistence_gate import InteractionRepository


def review_draft(organization_id, **overrides):
    values = dict(
        organization_id=organization_id,
        platform="google",
        type="review",
        platform_id="rev-1",
        content="Best latte in town",
        author_name="Alex",
        rating=5,
        sentiment="positive",
        platform_metadata={"location_id": "loc-1"},
    )
    values.update(overrides)
    return InteractionDraft(**values)


class TestInteractionRepository:

    def test_first_sighting_creates_unread_row(self, db_session, organization):
        result = InteractionRepository(db_session).upsert(review_draft(organization.id))

        assert result.created is True
        interaction = result.interaction
        assert interaction.status == "unread"
        assert interaction.is_read is False
        assert interaction.sentiment == "positive"
        assert interaction.rating == 5

    def test_redelivery_does_not_create_second_row(self, db_session, organization):
        repository = InteractionRepository(db_session)
        first = repository.upsert(review_draft(organization.id))
        second = repository.upsert(review_draft(organization.id))

        assert second.created is False
        assert second.interaction.id == first.interaction.id
        assert db_session.query(Interaction).count() == 1

    def test_same_platform_id_in_other_platform_is_distinct(self, db_session, organization):
        repository = InteractionRepository(db_session)
        repository.upsert(review_draft(organization.id))
        other = repository.upsert(review_draft(organization.id, platform="instagram", type="comment"))

        assert other.created is True
        assert db_session.query(Interaction).count() == 2

    def test_merge_refreshes_platform_fields_only(self, db_session, organization):
        repository = InteractionRepository(db_session)
        created = repository.upsert(review_draft(organization.id)).interaction
        repository.update_fields(created.id, {"status": "assigned", "intent": "praise", "assigned_to": None})

        edited_at = datetime(2024, 2, 1, tzinfo=timezone.utc)
        merged = repository.upsert(review_draft(
            organization.id,
            content="Best latte in town, edited",
            rating=4,
            platform_updated_at=edited_at,
            platform_metadata={"review_reply": {"comment": "Thanks"}},
        )).interaction

        assert merged.content == "Best latte in town, edited"
        assert merged.rating == 4
        assert merged.platform_metadata == {"location_id": "loc-1", "review_reply": {"comment": "Thanks"}}
        # Workflow and enrichment fields survive redelivery
        assert merged.status == "assigned"
        assert merged.intent == "praise"

    def test_empty_content_does_not_blank_existing(self, db_session, organization):
        repository = InteractionRepository(db_session)
        repository.upsert(review_draft(organization.id))
        merged = repository.upsert(review_draft(organization.id, content="")).interaction

        assert merged.content == "Best latte in town"

    def test_update_fields_is_scoped(self, db_session, organization):
        repository = InteractionRepository(db_session)
        interaction = repository.upsert(review_draft(organization.id)).interaction

        updated = repository.update_fields(interaction.id, {"topics": ["latte", "service"]})
        db_session.refresh(interaction)

        assert updated == 1
        assert interaction.topics == ["latte", "service"]
        assert interaction.content == "Best latte in town"

    def test_storage_outage_raises_persistence_error(self, db_session, organization):
        repository = InteractionRepository(db_session)
        outage = OperationalError("SELECT 1", {}, Exception("database is locked"))

        with patch.object(repository, "find_by_identity", side_effect=outage):
            with pytest.raises(PersistenceError) as exc_info:
                repository.upsert(review_draft(organization.id))

        assert exc_info.value.retryable is True

    def test_get_scoped_to_organization(self, db_session, organization):
        repository = InteractionRepository(db_session)
        interaction = repository.upsert(review_draft(organization.id)).interaction

        assert repository.get(interaction.id, organization_id=organization.id) is not None
        assert repository.get(interaction.id, organization_id="other-org") is None
