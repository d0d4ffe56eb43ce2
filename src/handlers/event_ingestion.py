"""
Direct event ingestion handler for POST /events.

The synchronous API path: it calls the same EventProcessor the bus
subscriber uses, bypassing the broker, so the same invariants hold.
"""

from __future__ import annotations

import json
import uuid
from typing import Optional

from models.outcome import OutcomeStatus
from utils.logging_config import get_logger

logger = get_logger(__name__)

# Lazy-loaded processor to avoid import-time DB connections
_processor: Optional["EventProcessor"] = None

_STATUS_CODES = {
    OutcomeStatus.SUCCESS: 200,
    OutcomeStatus.REJECTED: 422,
    OutcomeStatus.FAILED: 503,
}


def _get_processor():
    """Lazy-load EventProcessor."""
    global _processor
    if _processor is None:
        from config.settings import Settings
        from handlers.wiring import build_processor

        _processor = build_processor(Settings.from_environment())
    return _processor


def lambda_handler(event, context):
    """Process one event envelope from the request body."""
    correlation_id = str(uuid.uuid4())

    try:
        payload = json.loads(event.get("body") or "{}")
    except json.JSONDecodeError as exc:
        logger.warning("Malformed event body", extra={"correlation_id": correlation_id})
        return {
            "statusCode": 400,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(
                {
                    "message": "Invalid request",
                    "error": str(exc),
                    "correlation_id": correlation_id,
                }
            ),
        }

    outcome = _get_processor().process_event(payload)
    logger.info(
        "Event ingested",
        extra={"correlation_id": correlation_id, "status": outcome.status.value},
    )

    body = outcome.model_dump(mode="json", exclude_none=True)
    body["correlation_id"] = correlation_id
    return {
        "statusCode": _STATUS_CODES[outcome.status],
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }
