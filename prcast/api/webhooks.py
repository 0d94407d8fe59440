"""
Webhook endpoint for GitHub pull request events.
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Header, HTTPException, Request

from prcast.config import settings
from prcast.models.api_response import WebhookResponse
from prcast.services.event_ingestor import EventIngestor, is_qualifying_event
from prcast.services.repository_matcher import ProjectNotFoundError
from prcast.services.signature import SIGNATURE_HEADER, verify_signature
from prcast.utils.logging import log_webhook_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

ingestor = EventIngestor()


@router.post("/github", response_model=WebhookResponse)
async def handle_github_webhook(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
) -> WebhookResponse:
    """
    Receive GitHub pull request deliveries.

    This endpoint:
    1. Rejects deliveries without a signature header (401)
    2. Parses the JSON body (400 if it is not JSON)
    3. Finds the project for the repository (404 if none)
    4. Verifies the signature with the project's secret (401 on mismatch)
    5. Ignores anything but a merged pull request (200 "ignored")
    6. Stores the event, enqueues a pipeline run and returns 200 "accepted"

    Raises:
        HTTPException: On any rejection above, or 500 if storing/enqueuing fails
    """
    if not x_hub_signature_256:
        logger.warning(f"Received a delivery without the {SIGNATURE_HEADER} header")
        raise HTTPException(status_code=401, detail="Missing webhook signature")

    body = await request.body()
    try:
        delivery: Dict[str, Any] = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(delivery, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    full_name = (delivery.get("repository") or {}).get("full_name")
    if not full_name:
        raise HTTPException(status_code=400, detail="Payload has no repository")

    try:
        project = await ingestor.find_project(full_name)
    except ProjectNotFoundError:
        logger.info(f"No project configured for repository {full_name}")
        raise HTTPException(status_code=404, detail="No project configured for this repository")
    except Exception as e:
        logger.error(f"Error looking up project for {full_name}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error processing webhook")

    secret = project.webhook_secret or settings.github_webhook_secret
    if not verify_signature(body, x_hub_signature_256, secret):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    action = delivery.get("action") or ""
    pr_number = (delivery.get("pull_request") or {}).get("number") or 0

    if not is_qualifying_event(delivery):
        log_webhook_event(logger, full_name, pr_number, action, "ignored")
        return WebhookResponse(
            status="ignored",
            message=f"Event '{action}' is not a merged pull request",
        )

    try:
        event = await ingestor.ingest(project, delivery)
    except Exception as e:
        logger.error(f"Error storing webhook for {full_name}#{pr_number}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error processing webhook")

    log_webhook_event(logger, full_name, pr_number, action, "accepted")
    return WebhookResponse(
        status="accepted",
        message=f"PR #{pr_number} accepted for processing",
        webhook_event_id=event.id,
    )
