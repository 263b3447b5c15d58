"""
Tests for the dead-letter ledger
"""
from unittest.mock import patch

from social_inbox.core.dead_letters import DeadLetterLedger, FailureKind, classify_failure, dead_letter
from social_inbox.core.errors import AdapterError, AuthError, EnrichmentError, PersistenceError


class TestClassifyFailure:

    def test_typed_errors(self):
        assert classify_failure(AuthError("expired")) == FailureKind.AUTH_ERROR
        assert classify_failure(AdapterError("bad")) == FailureKind.INVALID_DATA
        assert classify_failure(PersistenceError("down")) == FailureKind.PERSISTENCE_ERROR
        assert classify_failure(EnrichmentError("timeout")) == FailureKind.EXTERNAL_API_ERROR

    def test_untyped_errors(self):
        assert classify_failure(TimeoutError("read timed out")) == FailureKind.TIMEOUT
        assert classify_failure(RuntimeError("429 too many requests")) == FailureKind.RATE_LIMIT
        assert classify_failure(ConnectionError("refused")) == FailureKind.NETWORK_ERROR
        assert classify_failure(ValueError("bad date")) == FailureKind.INVALID_DATA
        assert classify_failure(KeyError("boom")) == FailureKind.INTERNAL_ERROR


class TestDeadLetterLedger:

    def test_repeat_failure_refreshes_entry(self, db_session):
        ledger = DeadLetterLedger(db=db_session)

        first = ledger.record("t-1", "enrich_interaction", "enrichment", FailureKind.EXTERNAL_API_ERROR,
                              "provider down", args=("i-1",), attempts=3, context={"attempt": 1})
        ledger.mark_requeued("t-1")
        again = ledger.record("t-1", "enrich_interaction", "enrichment", FailureKind.EXTERNAL_API_ERROR,
                              "still down", attempts=3, context={"attempt": 2})

        assert again.id == first.id
        assert again.error == "still down"
        assert again.args == ["i-1"]
        assert again.context == {"attempt": 2}
        assert again.needs_review is False
        assert again.is_requeued is False

    def test_summary(self, db_session):
        ledger = DeadLetterLedger(db=db_session)
        ledger.record("t-1", "process_webhook_event", "ingestion", FailureKind.INVALID_DATA, "bad payload")
        ledger.record("t-2", "enrich_interaction", "enrichment", FailureKind.PERSISTENCE_ERROR, "db down")

        summary = ledger.summary()

        assert summary["open"] == 2
        assert summary["needs_review"] == 1
        assert summary["failed_last_24h"] == 2
        assert summary["by_queue"] == {"ingestion": 1, "enrichment": 1}
        assert summary["by_kind"] == {"invalid_data": 1, "persistence_error": 1}

    def test_requeued_entries_leave_pending(self, db_session):
        ledger = DeadLetterLedger(db=db_session)
        ledger.record("t-1", "sync_platform_connection", "sync", FailureKind.AUTH_ERROR, "token expired")

        assert [entry.task_id for entry in ledger.pending(queue="sync", needs_review=True)] == ["t-1"]
        assert ledger.mark_requeued("t-1") is True
        assert ledger.mark_requeued("missing") is False
        assert ledger.pending(queue="sync") == []
        assert ledger.summary()["needs_review"] == 0

    def test_dead_letter_swallows_ledger_failures(self):
        with patch("social_inbox.core.dead_letters.DeadLetterLedger", side_effect=RuntimeError("no database")):
            dead_letter("t-1", "enrich_interaction", "enrichment", PersistenceError("db down"))
