"""
Unit tests for the GitHub webhook endpoint.
"""

import json

import pytest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from prcast.main import app
from prcast.services.repository_matcher import ProjectNotFoundError
from prcast.services.signature import compute_signature


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def mock_ingestor(sample_project, sample_event):
    """Mock Event Ingestor."""
    with patch('prcast.api.webhooks.ingestor') as mock:
        mock.find_project = AsyncMock(return_value=sample_project)
        mock.ingest = AsyncMock(return_value=sample_event)
        yield mock


def merged_pr_delivery(action: str = "closed", merged: bool = True) -> dict:
    return {
        "action": action,
        "repository": {"full_name": "acme/storefront"},
        "pull_request": {
            "number": 12,
            "title": "Add checkout button",
            "merged": merged,
            "merged_at": "2024-05-01T10:00:00Z",
            "merged_by": {"login": "octocat"},
        },
    }


def post_delivery(client, delivery, secret="project_secret", signature=None):
    body = json.dumps(delivery).encode()
    headers = {"Content-Type": "application/json"}
    headers["X-Hub-Signature-256"] = signature or compute_signature(body, secret)
    return client.post("/webhooks/github", content=body, headers=headers)


def test_webhook_requires_signature(client, mock_ingestor):
    """Test that a delivery without a signature is rejected before anything else."""
    response = client.post("/webhooks/github", json=merged_pr_delivery())

    assert response.status_code == 401
    mock_ingestor.find_project.assert_not_called()


def test_webhook_invalid_json(client, mock_ingestor):
    response = client.post(
        "/webhooks/github",
        content=b"not json",
        headers={"X-Hub-Signature-256": compute_signature(b"not json", "project_secret")},
    )

    assert response.status_code == 400


def test_webhook_missing_repository(client, mock_ingestor):
    response = post_delivery(client, {"action": "closed"})

    assert response.status_code == 400


def test_webhook_unknown_repository(client, mock_ingestor):
    mock_ingestor.find_project.side_effect = ProjectNotFoundError("none")

    response = post_delivery(client, merged_pr_delivery())

    assert response.status_code == 404
    mock_ingestor.ingest.assert_not_called()


def test_webhook_invalid_signature(client, mock_ingestor):
    response = post_delivery(client, merged_pr_delivery(), secret="wrong_secret")

    assert response.status_code == 401
    assert "Invalid webhook signature" in response.json()["detail"]
    mock_ingestor.ingest.assert_not_called()


def test_webhook_falls_back_to_global_secret(client, mock_ingestor, sample_project):
    mock_ingestor.find_project.return_value = sample_project.model_copy(update={"webhook_secret": None})

    response = post_delivery(client, merged_pr_delivery(), secret="global_secret")

    assert response.status_code == 200
    assert response.json()["status"] == "accepted"


def test_webhook_accepts_merged_pr(client, mock_ingestor, sample_event):
    response = post_delivery(client, merged_pr_delivery())

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "accepted"
    assert data["webhook_event_id"] == sample_event.id
    assert "12" in data["message"]
    mock_ingestor.ingest.assert_awaited_once()


@pytest.mark.parametrize("action,merged", [
    ("closed", False),
    ("opened", False),
    ("synchronize", False),
    ("reopened", True),
])
def test_webhook_ignores_non_qualifying_events(client, mock_ingestor, action, merged):
    """Non-qualifying deliveries return 200 and write nothing."""
    response = post_delivery(client, merged_pr_delivery(action=action, merged=merged))

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    mock_ingestor.ingest.assert_not_called()


def test_webhook_storage_failure(client, mock_ingestor):
    mock_ingestor.ingest.side_effect = Exception("database unavailable")

    response = post_delivery(client, merged_pr_delivery())

    assert response.status_code == 500
