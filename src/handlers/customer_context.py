"""Handlers for GET /customers/{id}/context and GET /customers/{id}/timeline."""

import json
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from utils.error_handling import AppError, ValidationError, to_response
from utils.logging_config import get_logger

logger = get_logger(__name__)

# Lazy-loaded builder to avoid import-time DB connections
_context_builder: Optional["ContextBuilder"] = None


def _get_context_builder():
    """Lazy-load ContextBuilder."""
    global _context_builder
    if _context_builder is None:
        from config.settings import Settings
        from handlers.wiring import build_context_builder

        _context_builder = build_context_builder(Settings.from_environment())
    return _context_builder


def _customer_identifier(event) -> Optional[str]:
    path_params = event.get("pathParameters") or {}
    query_params = event.get("queryStringParameters") or {}
    return path_params.get("id") or query_params.get("customer_id") or query_params.get("email")


def lambda_handler(event, context):
    """Return the consolidated customer context."""
    from services.context_builder import ContextOptions

    identifier = _customer_identifier(event)
    if not identifier:
        return to_response(ValidationError("customer id or email is required"))

    query_params = event.get("queryStringParameters") or {}
    try:
        options = ContextOptions(
            **{k: v for k, v in query_params.items() if k in ContextOptions.model_fields}
        )
        context_obj = _get_context_builder().build_context(identifier, options)
    except PydanticValidationError as exc:
        return to_response(ValidationError(f"Invalid options: {exc.error_count()} errors"))
    except AppError as exc:
        return to_response(exc)

    logger.info("Customer context served", extra={"customer_id": context_obj.customer.id})
    return {
        "statusCode": 200,
        "headers": {"Content-Type": "application/json"},
        "body": context_obj.model_dump_json(),
    }


def timeline_handler(event, context):
    """Return the customer's events ordered by event date."""
    identifier = _customer_identifier(event)
    if not identifier:
        return to_response(ValidationError("customer id is required"))

    query_params = event.get("queryStringParameters") or {}
    try:
        limit = int(query_params.get("limit", 50))
    except ValueError:
        return to_response(ValidationError("limit must be an integer"))
    event_types = [t for t in (query_params.get("event_types") or "").split(",") if t]

    events = _get_context_builder().get_customer_timeline(
        identifier, limit=limit, event_types=event_types or None
    )
    return {
        "statusCode": 200,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps([e.model_dump(mode="json") for e in events]),
    }
