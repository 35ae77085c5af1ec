"""GitHub webhook receiver. Authenticated by payload signature, not by team membership."""

import json
import logging

from fastapi import APIRouter, HTTPException, Request

from ghpolicies.core.config import settings
from ghpolicies.core.security import verify_webhook_signature
from ghpolicies.tasks.celery_app import process_pull_request_event

logger = logging.getLogger("ghpolicies.webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/github")
async def receive_github_event(request: Request):
    """Verify a delivery and queue the pull request events it carries."""
    body = await request.body()
    if not settings.GITHUB_WEBHOOK_SECRET:
        logger.warning("Webhook secret is not configured; rejecting delivery")
        raise HTTPException(status_code=401, detail="Webhook secret not configured")
    if not verify_webhook_signature(body, request.headers.get("X-Hub-Signature-256"),
                                    settings.GITHUB_WEBHOOK_SECRET):
        logger.warning("Invalid webhook signature (body length %d)", len(body))
        raise HTTPException(status_code=401, detail="Invalid signature")

    event = request.headers.get("X-GitHub-Event", "")
    delivery_id = request.headers.get("X-GitHub-Delivery")

    if event == "ping":
        return {"message": "pong", "event": event, "delivery_id": delivery_id}
    if event != "pull_request":
        logger.info("Unhandled webhook event %s", event.replace("\n", ""))
        return {"received": True, "event": event, "delivery_id": delivery_id, "queued": False}

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Malformed JSON payload")

    action = payload.get("action")
    task = process_pull_request_event.delay(action, payload, delivery_id)
    logger.info("Queued pull_request event (action %s, delivery %s) as task %s", action, delivery_id, task.id)
    return {"received": True, "event": event, "delivery_id": delivery_id, "queued": True, "task_id": task.id}
