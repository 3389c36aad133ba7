"""
Orchestra - Agent Webhooks
==========================

Callback endpoint the Cursor agent platform posts progress to:

    POST /webhooks/cursor/{task_id}

The body may take any of the shapes the normalizer understands. The
endpoint always answers with a JSON body and never lets an exception
reach the caller.
"""

import json
from typing import Any

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from orchestra.api.deps import Broadcaster, DbSession, Queue
from orchestra.core.orchestration.errors import (
    InvalidPayloadError,
    WebhookProcessingError,
)
from orchestra.core.orchestration.lookups import get_task
from orchestra.core.orchestration.transitions import StatusTransitionEngine
from orchestra.core.orchestration.webhooks import WebhookDispatcher
from orchestra.core.schemas import WebhookAccepted

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


async def read_payload(request: Request) -> dict[str, Any]:
    """
    Query parameters overlaid with the JSON body.

    Raises:
        InvalidPayloadError: the body is present but is not a JSON object
    """
    payload: dict[str, Any] = dict(request.query_params)

    raw = await request.body()
    if not raw.strip():
        return payload

    try:
        body = json.loads(raw)
    except ValueError as e:
        raise InvalidPayloadError(f"Invalid JSON body: {e}") from e
    if not isinstance(body, dict):
        raise InvalidPayloadError("Webhook body must be a JSON object")

    payload.update(body)
    return payload


@router.post(
    "/cursor/{task_id}",
    response_model=WebhookAccepted,
    summary="Cursor agent status callback",
)
async def cursor_webhook(
    task_id: str,
    request: Request,
    db: DbSession,
    queue: Queue,
    broadcaster: Broadcaster,
):
    """Apply an agent status callback to a task."""
    try:
        task = await get_task(db, task_id)
        if task is None:
            logger.error("webhook_task_not_found", task_id=task_id)
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={"error": "Task not found"},
            )

        payload = await read_payload(request)
        logger.info(
            "webhook_received",
            task_id=task_id,
            task_status=task.status.value,
            payload=payload,
        )

        dispatcher = WebhookDispatcher(StatusTransitionEngine(db, broadcaster), queue)
        outcome = await dispatcher.handle(task, payload)

    except InvalidPayloadError as e:
        logger.error("webhook_invalid_payload", task_id=task_id, error=e.message)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid payload"},
        )
    except WebhookProcessingError as e:
        logger.error("webhook_processing_failed", task_id=task_id, error=e.message)
        return JSONResponse(
            status_code=e.status_code,
            content={"error": e.message},
        )
    except Exception as e:
        logger.error("webhook_unexpected_error", task_id=task_id, error=str(e), exc_info=e)
        await db.rollback()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    logger.info(
        "webhook_processed",
        task_id=task_id,
        status=outcome.status,
        skipped=outcome.result.skipped,
        recognized=outcome.result.recognized,
    )
    return WebhookAccepted(task_id=task_id, status=outcome.status)
