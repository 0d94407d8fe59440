"""
Unit tests for pipeline management endpoints.
"""

import pytest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from prcast.main import app
from prcast.models.project import Project
from prcast.models.update import Update, UpdateStatus
from prcast.services.github_client import GitHubAPIError

ADMIN_HEADERS = {"X-API-Key": "admin_key"}


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def mock_store(sample_event, sample_project):
    with patch('prcast.api.pipeline.store') as mock:
        mock.get_webhook_event = AsyncMock(return_value=sample_event)
        mock.get_project = AsyncMock(return_value=sample_project)
        mock.list_updates_for_event = AsyncMock(return_value=[])
        mock.list_projects = AsyncMock(return_value=[sample_project])
        yield mock


@pytest.fixture
def mock_redis():
    with patch('prcast.api.pipeline.redis_client') as mock:
        mock.enqueue_pipeline_run = AsyncMock()
        mock.get_run_snapshot = AsyncMock(return_value=None)
        yield mock


@pytest.fixture
def mock_ingestor(sample_event):
    with patch('prcast.api.pipeline.ingestor') as mock:
        mock.ingest_initial_commits = AsyncMock(return_value=(sample_event, 3, "main"))
        yield mock


class TestAuthentication:
    """Test admin API key handling."""

    def test_missing_api_key(self, client, mock_store, mock_redis):
        response = client.post("/internal/pipeline/trigger", json={"webhookEventId": "evt-1"})

        assert response.status_code == 401
        assert response.json()["detail"] == "API key required"

    def test_invalid_api_key(self, client, mock_store, mock_redis):
        response = client.post(
            "/internal/pipeline/trigger",
            json={"webhookEventId": "evt-1"},
            headers={"X-API-Key": "wrong"},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid API key"


class TestTrigger:
    """Test manual pipeline triggers."""

    def test_trigger_enqueues_run(self, client, mock_store, mock_redis):
        response = client.post(
            "/internal/pipeline/trigger",
            json={"webhookEventId": "evt-1", "force": True},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"status": "queued", "webhook_event_id": "evt-1", "force": True}
        mock_redis.enqueue_pipeline_run.assert_awaited_once_with("evt-1", force=True)

    def test_trigger_unknown_event(self, client, mock_store, mock_redis):
        mock_store.get_webhook_event.return_value = None

        response = client.post(
            "/internal/pipeline/trigger", json={"webhookEventId": "missing"}, headers=ADMIN_HEADERS
        )

        assert response.status_code == 404
        mock_redis.enqueue_pipeline_run.assert_not_called()


class TestInitialUpdate:
    """Test backfill requests."""

    def test_initial_update_queues_event(self, client, mock_store, mock_ingestor):
        response = client.post("/api/projects/proj-1/initial-update", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["webhook_event_id"] == "evt-1"
        assert data["commit_count"] == 3
        assert data["branch"] == "main"

    def test_initial_update_unknown_project(self, client, mock_store, mock_ingestor):
        mock_store.get_project.return_value = None

        response = client.post("/api/projects/missing/initial-update", headers=ADMIN_HEADERS)

        assert response.status_code == 404

    def test_initial_update_without_github_url(self, client, mock_store, mock_ingestor):
        mock_store.get_project.return_value = Project(id="proj-2", name="No repo")

        response = client.post("/api/projects/proj-2/initial-update", headers=ADMIN_HEADERS)

        assert response.status_code == 400
        mock_ingestor.ingest_initial_commits.assert_not_called()

    def test_initial_update_github_failure(self, client, mock_store, mock_ingestor):
        mock_ingestor.ingest_initial_commits.side_effect = GitHubAPIError("Not Found", status_code=404)

        response = client.post("/api/projects/proj-1/initial-update", headers=ADMIN_HEADERS)

        assert response.status_code == 502


class TestStatus:
    """Test status polling."""

    def test_webhook_event_status(self, client, mock_store):
        mock_store.list_updates_for_event.return_value = [
            Update(
                id="upd-1",
                project_id="proj-1",
                webhook_event_id="evt-1",
                title="Add checkout button",
                status=UpdateStatus.COMPLETED,
                video_url="http://localhost:8000/artifacts/videos/x_final.mp4",
            )
        ]

        response = client.get("/api/webhook-events/evt-1")

        assert response.status_code == 200
        data = response.json()
        assert data["event"]["id"] == "evt-1"
        assert data["updates"][0]["status"] == "completed"

    def test_webhook_event_status_not_found(self, client, mock_store):
        mock_store.get_webhook_event.return_value = None

        assert client.get("/api/webhook-events/missing").status_code == 404

    def test_run_snapshot(self, client, mock_redis):
        mock_redis.get_run_snapshot.return_value = {"report_key": "acme_PR_12", "stage": "muxing"}

        response = client.get("/api/runs/acme_PR_12")

        assert response.status_code == 200
        assert response.json()["stage"] == "muxing"

    def test_run_snapshot_not_found(self, client, mock_redis):
        assert client.get("/api/runs/unknown").status_code == 404


class TestProjectValidation:
    """Test repository cardinality checks."""

    def test_conflicting_repository(self, client, mock_store):
        response = client.post(
            "/api/projects/validate",
            json={"github_url": "git@github.com:acme/storefront.git"},
            headers=ADMIN_HEADERS,
        )

        data = response.json()
        assert data["valid"] is False
        assert [p["id"] for p in data["conflicts"]] == ["proj-1"]

    def test_same_project_is_not_a_conflict(self, client, mock_store):
        response = client.post(
            "/api/projects/validate",
            json={"github_url": "https://github.com/acme/storefront", "project_id": "proj-1"},
            headers=ADMIN_HEADERS,
        )

        assert response.json()["valid"] is True

    def test_invalid_url(self, client, mock_store):
        response = client.post(
            "/api/projects/validate",
            json={"github_url": "https://example.com/acme"},
            headers=ADMIN_HEADERS,
        )

        data = response.json()
        assert data["valid"] is False
        assert "Invalid" in data["error_message"]
