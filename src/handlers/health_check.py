"""Health check for the synchronous API path."""

import os
import json
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from utils.logging_config import SERVICE_NAME, get_logger

logger = get_logger(__name__)


def _store_status() -> str:
    from handlers.event_ingestion import _get_processor

    try:
        with _get_processor().store.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Derived store health probe failed", extra={"error": str(exc)})
        return "unavailable"
    return "ok"


def lambda_handler(event, context):
    """
    Return 200 while the service is alive.

    ``?deep=true`` also probes the derived store and answers 503 when it
    cannot be reached.
    """
    query_params = (event or {}).get("queryStringParameters") or {}
    body = {
        "status": "ok",
        "service": SERVICE_NAME,
        "environment": os.environ.get("ENVIRONMENT", "dev"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    status_code = 200
    if str(query_params.get("deep", "")).lower() == "true":
        body["store"] = _store_status()
        if body["store"] != "ok":
            body["status"] = "degraded"
            status_code = 503

    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }
