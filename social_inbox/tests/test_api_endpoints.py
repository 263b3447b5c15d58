"""
Tests for the manual sync trigger, reply endpoint and metrics
"""
import httpx
import pytest
from fastapi.testclient import TestClient

from social_inbox.api.inbox import get_registry
from social_inbox.api.platforms import get_sync_enqueuer
from social_inbox.core.http_client import HTTPClient, HTTPClientConfig
from social_inbox.db.database import get_db
from social_inbox.integrations.registry import AdapterRegistry
from social_inbox.main import app
from social_inbox.tests.factories import make_interaction


class PlatformStub:
    """Records Graph API calls and answers with a canned response"""

    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body if body is not None else {"id": "reply-1"}
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


@pytest.fixture
def platform_stub():
    return PlatformStub()


@pytest.fixture
def client(db_session, recording_scheduler, platform_stub):
    http = HTTPClient(HTTPClientConfig(timeout=5, max_retries=0), transport=httpx.MockTransport(platform_stub))
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_sync_enqueuer] = lambda: recording_scheduler
    app.dependency_overrides[get_registry] = lambda: AdapterRegistry(http_client=http)
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestManualSync:

    def test_sync_is_queued(self, client, organization, make_connection, recording_scheduler):
        connection = make_connection("instagram")

        response = client.post(f"/api/platforms/{connection.id}/sync",
                               headers={"X-Organization-Id": organization.id})

        assert response.status_code == 202
        assert response.json()["task_id"] == "task-1"
        assert recording_scheduler.calls == [connection.id]

    def test_unknown_connection(self, client, organization):
        response = client.post("/api/platforms/missing/sync", headers={"X-Organization-Id": organization.id})

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": {"code": "not_found",
                                                               "message": "Connection missing not found"}}

    def test_other_organization_cannot_sync(self, client, make_connection):
        connection = make_connection("instagram")
        response = client.post(f"/api/platforms/{connection.id}/sync", headers={"X-Organization-Id": "other"})
        assert response.status_code == 404

    def test_expired_connection_conflicts(self, client, organization, make_connection, recording_scheduler):
        connection = make_connection("instagram", status="token_expired")

        response = client.post(f"/api/platforms/{connection.id}/sync",
                               headers={"X-Organization-Id": organization.id})

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"
        assert recording_scheduler.calls == []

    def test_missing_organization_header(self, client, make_connection):
        connection = make_connection("instagram")
        response = client.post(f"/api/platforms/{connection.id}/sync")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "missing_organization"


class TestReplyEndpoint:

    def test_reply_is_posted_and_recorded(self, client, db_session, organization, make_connection, platform_stub):
        connection = make_connection("instagram", platform_data={"business_account_id": "ig-biz"})
        interaction = make_interaction(db_session, organization.id, platform_id="c1", connection_id=connection.id)

        response = client.post(f"/api/inbox/{interaction.id}/reply", json={"content": "Thanks!", "sent_by": 7},
                               headers={"X-Organization-Id": organization.id})

        assert response.status_code == 200
        reply = response.json()["reply"]
        assert reply["content"] == "Thanks!"
        assert reply["platform_response_id"] == "reply-1"
        assert platform_stub.requests[0].url.path.endswith("/c1/replies")
        db_session.refresh(interaction)
        assert interaction.status == "replied"
        assert interaction.replies[0]["sent_by"] == 7

    def test_platform_rejection_is_structured(self, client, db_session, organization, make_connection,
                                              platform_stub):
        platform_stub.status_code = 400
        connection = make_connection("instagram")
        interaction = make_interaction(db_session, organization.id, connection_id=connection.id)

        response = client.post(f"/api/inbox/{interaction.id}/reply", json={"content": "Thanks!"},
                               headers={"X-Organization-Id": organization.id})

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "platform_api_error"

    def test_unknown_interaction(self, client, organization):
        response = client.post("/api/inbox/missing/reply", json={"content": "Hi"},
                               headers={"X-Organization-Id": organization.id})
        assert response.status_code == 404

    def test_empty_reply_is_invalid(self, client, organization):
        response = client.post("/api/inbox/anything/reply", json={"content": ""},
                               headers={"X-Organization-Id": organization.id})
        assert response.status_code == 422


class TestMetricsEndpoint:

    def test_metrics_exposed(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "inbox_sync_runs_total" in response.text
