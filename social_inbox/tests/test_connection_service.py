"""
Tests for platform connection bookkeeping
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from social_inbox.core.errors import AuthError, PlatformAPIError
from social_inbox.services.connection_service import ConnectionService


class TestResolveWebhookConnection:

    def test_matches_platform_user_id(self, db_session, make_connection):
        connection = make_connection("instagram", platform_user_id="17841400000")

        resolved = ConnectionService(db_session).resolve_webhook_connection("instagram", "17841400000")

        assert resolved.id == connection.id

    def test_matches_platform_data_keys(self, db_session, make_connection):
        whatsapp = make_connection("whatsapp", platform_data={"phone_number_id": "1055"})
        google = make_connection("google", platform_data={"location_ids": [42, "43"]})
        service = ConnectionService(db_session)

        assert service.resolve_webhook_connection("whatsapp", "1055").id == whatsapp.id
        assert service.resolve_webhook_connection("google", "42").id == google.id
        assert service.resolve_webhook_connection("google", "43").id == google.id

    def test_ignores_inactive_and_other_platforms(self, db_session, make_connection):
        make_connection("instagram", platform_user_id="555", is_active=False)
        make_connection("facebook", platform_user_id="777")
        service = ConnectionService(db_session)

        assert service.resolve_webhook_connection("instagram", "555") is None
        assert service.resolve_webhook_connection("instagram", "777") is None

    def test_many_entries_share_one_lookup(self, db_session, make_connection):
        first = make_connection("facebook", platform_user_id="p1")
        second = make_connection("facebook", platform_data={"page_id": "p2"})
        service = ConnectionService(db_session)

        with patch.object(db_session, "query", wraps=db_session.query) as query:
            resolved = [service.resolve_webhook_connection("facebook", key) for key in ("p1", "p2", "p1", "p3")]

        assert query.call_count == 1
        assert [c.id if c else None for c in resolved] == [first.id, second.id, first.id, None]


class TestTokenExpiry:

    def test_expiry_margin(self, make_connection):
        now = datetime.now(timezone.utc)
        soon = make_connection(token_expires_at=now + timedelta(minutes=2))
        later = make_connection(token_expires_at=now + timedelta(hours=2))
        never = make_connection(token_expires_at=None)

        assert ConnectionService.is_token_expired(soon, now) is True
        assert ConnectionService.is_token_expired(later, now) is False
        assert ConnectionService.is_token_expired(never, now) is False


class TestRecordSyncResult:

    def test_success_resets_failures(self, db_session, make_connection):
        connection = make_connection(failed_sync_attempts=2, total_interactions_synced=10, status="error")

        ConnectionService(db_session).record_sync_result(connection, success=True, count=5)

        assert connection.last_sync_at is not None
        assert connection.last_sync_count == 5
        assert connection.total_interactions_synced == 15
        assert connection.failed_sync_attempts == 0
        assert connection.status == "connected"

    def test_failure_is_logged(self, db_session, make_connection):
        connection = make_connection(failed_sync_attempts=0, total_interactions_synced=0)

        ConnectionService(db_session).record_sync_result(
            connection, success=False, count=3, error=PlatformAPIError("Graph API 500", status_code=500)
        )

        assert connection.failed_sync_attempts == 1
        assert connection.total_interactions_synced == 3
        assert connection.last_error == "Graph API 500"
        assert connection.last_error_code == "platform_api_error"
        assert connection.status == "error"

    def test_auth_failure_marks_token_expired(self, db_session, make_connection):
        connection = make_connection()

        ConnectionService(db_session).record_sync_result(connection, success=False, error=AuthError("expired"))

        assert connection.status == "token_expired"
        assert connection.last_error_code == "auth_error"
