"""
Single entrypoint Lambda for the synchronous API path.

Routes direct event ingestion and context reads to thin handler modules so
warm service instances are shared across routes.
"""

from typing import Callable, Dict, Tuple
import json

from . import customer_context, event_ingestion, health_check


def _response(status: int, body: Dict) -> Dict:
    """Format a JSON API Gateway HTTP API response."""
    return {
        "statusCode": status,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }


def _route(method: str, path: str) -> Tuple[str, str]:
    """Reduce /customers/{id}/context style paths to a route suffix."""
    parts = [p for p in path.split("/") if p]
    if len(parts) == 3 and parts[0] == "customers":
        return f"{method} /customers/*/{parts[2]}", parts[1]
    return f"{method} {path.rstrip('/') or '/'}", ""


def lambda_handler(event, context):
    """
    Entry point invoked by API Gateway HTTP API.

    The event contains the HTTP method and path; the customer id segment is
    copied into pathParameters before delegating.
    """
    http = event.get("requestContext", {}).get("http", {})
    route_key, customer_id = _route(http.get("method", "").upper(), http.get("path", ""))

    route_table: Dict[str, Callable] = {
        "GET /health": health_check.lambda_handler,
        "POST /events": event_ingestion.lambda_handler,
        "GET /customers/*/context": customer_context.lambda_handler,
        "GET /customers/*/timeline": customer_context.timeline_handler,
    }

    handler = route_table.get(route_key)
    if handler is None:
        return _response(404, {"message": "Route not found", "route": route_key})

    if customer_id:
        path_params = {**(event.get("pathParameters") or {}), "id": customer_id}
        event = {**event, "pathParameters": path_params}
    return handler(event, context)
