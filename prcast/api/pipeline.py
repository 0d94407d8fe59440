"""
Pipeline management endpoints: manual triggers, backfills and status polling.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from prcast.models.api_response import (
    InitialUpdateResponse,
    ProjectValidationRequest,
    ProjectValidationResult,
    TriggerRequest,
    TriggerResponse,
    WebhookEventStatus,
)
from prcast.api.auth import verify_api_key
from prcast.services.event_ingestor import EventIngestor
from prcast.services.github_client import GitHubAPIError
from prcast.services.redis_client import get_redis_client
from prcast.services.repository_matcher import ProjectNotFoundError, parse_repository_url
from prcast.services.store import get_event_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pipeline"])

store = get_event_store()
redis_client = get_redis_client()
ingestor = EventIngestor()


@router.post(
    "/internal/pipeline/trigger",
    response_model=TriggerResponse,
    dependencies=[Depends(verify_api_key)],
)
async def trigger_pipeline(request: TriggerRequest) -> TriggerResponse:
    """
    Enqueue a pipeline run for a stored webhook event.

    With ``force`` the run happens even if the event already completed,
    which is how a failed or stale update is regenerated.

    Raises:
        HTTPException: 404 if the event does not exist
    """
    try:
        event = await store.get_webhook_event(request.webhookEventId)
        if event is None:
            raise HTTPException(status_code=404, detail=f"Webhook event {request.webhookEventId} not found")

        await redis_client.enqueue_pipeline_run(event.id, force=request.force)
        logger.info(f"Pipeline run for event {event.id} enqueued manually (force={request.force})")

        return TriggerResponse(status="queued", webhook_event_id=event.id, force=request.force)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error triggering pipeline for {request.webhookEventId}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to trigger pipeline: {str(e)}")


@router.post(
    "/api/projects/{project_id}/initial-update",
    response_model=InitialUpdateResponse,
    dependencies=[Depends(verify_api_key)],
)
async def create_initial_update(project_id: str) -> InitialUpdateResponse:
    """
    Generate a first update from the existing commits of a project's
    default branch.

    Raises:
        HTTPException: 404 unknown project, 400 no usable GitHub URL,
            502 GitHub could not be read
    """
    try:
        project = await store.get_project(project_id)
        if project is None:
            raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
        if not project.github_url:
            raise HTTPException(status_code=400, detail="Project has no GitHub URL")

        event, commit_count, branch = await ingestor.ingest_initial_commits(project)

        return InitialUpdateResponse(
            status="queued",
            webhook_event_id=event.id,
            commit_count=commit_count,
            branch=branch,
        )

    except HTTPException:
        raise
    except ProjectNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GitHubAPIError as e:
        logger.warning(f"GitHub error during backfill of project {project_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating initial update for project {project_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to create initial update: {str(e)}")


@router.get("/api/webhook-events/{event_id}", response_model=WebhookEventStatus)
async def get_webhook_event_status(event_id: str) -> WebhookEventStatus:
    """Processing status of an event and the updates generated from it."""
    event = await store.get_webhook_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Webhook event {event_id} not found")

    updates = await store.list_updates_for_event(event_id)
    return WebhookEventStatus(event=event, updates=updates)


@router.get("/api/runs/{report_key}")
async def get_run_snapshot(report_key: str) -> Dict[str, Any]:
    """Live stage snapshot of a pipeline run."""
    snapshot = await redis_client.get_run_snapshot(report_key)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Run {report_key} not found")
    return snapshot


@router.post(
    "/api/projects/validate",
    response_model=ProjectValidationResult,
    dependencies=[Depends(verify_api_key)],
)
async def validate_project(request: ProjectValidationRequest) -> ProjectValidationResult:
    """
    Check that a GitHub URL parses and is not already claimed by another
    project. Webhook routing assumes one project per repository.
    """
    ref = parse_repository_url(request.github_url)
    if ref is None:
        return ProjectValidationResult(valid=False, error_message="Invalid GitHub repository URL")

    projects = await store.list_projects()
    conflicts = []
    for project in projects:
        if project.id == request.project_id:
            continue
        other = parse_repository_url(project.github_url)
        if other is not None and other.key == ref.key:
            conflicts.append(project)

    if conflicts:
        return ProjectValidationResult(
            valid=False,
            conflicts=conflicts,
            error_message=f"{ref.full_name} is already connected to {len(conflicts)} project(s)",
        )
    return ProjectValidationResult(valid=True)
