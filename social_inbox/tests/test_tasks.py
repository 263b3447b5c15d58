"""
Tests for Celery task bodies and the shared retry policy
"""
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest
from celery.exceptions import Retry

from social_inbox.core.errors import AdapterError, EnrichmentError, PersistenceError
from social_inbox.services.routing_service import RoutingOutcome
from social_inbox.tasks import enrichment_tasks, sync_tasks
from social_inbox.tasks.retry import is_retryable_error, retry_countdown, retry_or_dead_letter


def fake_task(retries=0):
    task = Mock()
    task.name = "social_inbox.tasks.enrichment_tasks.enrich_interaction"
    task.request = SimpleNamespace(id="task-1", retries=retries)
    task.retry.return_value = Retry("retrying")
    return task


def session_factory(db_session):
    @contextmanager
    def _session():
        yield db_session
    return _session


class TestRetryPolicy:

    def test_retryability(self):
        assert is_retryable_error(PersistenceError("db down")) is True
        assert is_retryable_error(ConnectionError("broker")) is True
        assert is_retryable_error(AdapterError("bad payload")) is False
        assert is_retryable_error(EnrichmentError("missing")) is False

    def test_backoff_doubles(self):
        assert [retry_countdown(n) for n in range(2)] == [2, 4]

    def test_retryable_error_is_retried(self):
        task = fake_task(retries=1)

        with pytest.raises(Retry):
            retry_or_dead_letter(task, PersistenceError("db down"), queue_name="enrichment")

        assert task.retry.call_args.kwargs["countdown"] == 4
        assert task.retry.call_args.kwargs["max_retries"] == 2

    def test_third_failure_is_not_retried(self):
        task = fake_task(retries=2)

        with patch("social_inbox.tasks.retry.dead_letter") as dead_letter:
            result = retry_or_dead_letter(task, PersistenceError("db down"), queue_name="enrichment",
                                          organization_id="org-1", task_args=("i-1",))

        assert result["status"] == "failed"
        assert result["dead_lettered"] is True
        task.retry.assert_not_called()
        assert result["attempts"] == 3
        assert dead_letter.call_args.kwargs["attempts"] == 3
        assert dead_letter.call_args.kwargs["args"] == ("i-1",)

    def test_permanent_error_skips_retries(self):
        task = fake_task(retries=0)

        with patch("social_inbox.tasks.retry.dead_letter") as dead_letter:
            result = retry_or_dead_letter(task, AdapterError("unusable"), queue_name="ingestion")

        assert result["status"] == "failed"
        task.retry.assert_not_called()
        dead_letter.assert_called_once()


class TestEnrichmentTask:

    def test_success(self, db_session):
        pipeline = Mock()
        pipeline.enrich = AsyncMock(return_value=SimpleNamespace(organization_id="org-1"))
        pipeline.last_outcome = RoutingOutcome(interaction_id="i-1", decision="assigned", assigned_to=3)

        with patch.object(enrichment_tasks, "get_celery_db_session", session_factory(db_session)), \
                patch.object(enrichment_tasks, "EnrichmentPipeline", return_value=pipeline):
            result = enrichment_tasks.enrich_interaction("i-1")

        assert result["status"] == "success"
        assert result["routing"]["decision"] == "assigned"

    def test_missing_interaction_is_dead_lettered(self, db_session):
        with patch.object(enrichment_tasks, "get_celery_db_session", session_factory(db_session)), \
                patch("social_inbox.tasks.retry.dead_letter") as dead_letter:
            result = enrichment_tasks.enrich_interaction("does-not-exist")

        assert result["status"] == "failed"
        dead_letter.assert_called_once()
        assert dead_letter.call_args.kwargs["queue"] == "enrichment"


class TestSyncTasks:

    def test_is_sync_due(self):
        now = datetime.now(timezone.utc)
        assert sync_tasks.is_sync_due(SimpleNamespace(last_sync_at=None, settings={}), now) is True
        recent = SimpleNamespace(last_sync_at=now - timedelta(minutes=1), settings={})
        assert sync_tasks.is_sync_due(recent, now) is False
        stale = SimpleNamespace(last_sync_at=now - timedelta(minutes=10), settings={})
        assert sync_tasks.is_sync_due(stale, now) is True
        custom = SimpleNamespace(last_sync_at=now - timedelta(minutes=10), settings={"sync_interval_minutes": 30})
        assert sync_tasks.is_sync_due(custom, now) is False

    def test_sync_all_enqueues_due_auto_sync_connections(self, db_session, make_connection):
        due = make_connection("instagram")
        make_connection("facebook", last_sync_at=datetime.now(timezone.utc))
        make_connection("youtube", settings={"auto_sync": False})
        make_connection("google", is_active=False)

        with patch.object(sync_tasks, "get_celery_db_session", session_factory(db_session)), \
                patch.object(sync_tasks.sync_platform_connection, "apply_async") as apply_async:
            result = sync_tasks.sync_all_connections()

        assert result["queued"] == [due.id]
        apply_async.assert_called_once_with(args=[due.id], queue='sync')

    def test_sync_platform_connection_skips_inactive(self, db_session, make_connection):
        connection = make_connection("instagram", is_active=False)

        with patch.object(sync_tasks, "get_celery_db_session", session_factory(db_session)):
            result = sync_tasks.sync_platform_connection(connection.id)

        assert result["status"] == "skipped"

    def test_sync_platform_connection_reports_run(self, db_session, make_connection):
        connection = make_connection("instagram")
        report = SimpleNamespace(success=False, to_dict=lambda: {"connection_id": connection.id, "created": 0})
        dispatcher = Mock()
        dispatcher.sync_connection = AsyncMock(return_value=report)

        with patch.object(sync_tasks, "get_celery_db_session", session_factory(db_session)), \
                patch.object(sync_tasks, "IngestionDispatcher", return_value=dispatcher):
            result = sync_tasks.sync_platform_connection(connection.id)

        assert result["status"] == "failed"
        assert result["connection_id"] == connection.id
