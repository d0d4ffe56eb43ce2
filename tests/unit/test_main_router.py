import json

from src.handlers import main


def test_main_routes_health(monkeypatch):
    monkeypatch.setattr(main.health_check, "lambda_handler", lambda e, c: {"status": "ok"})
    event = {"requestContext": {"http": {"method": "GET", "path": "/health"}}}
    resp = main.lambda_handler(event, None)
    assert resp["status"] == "ok"


def test_main_routes_event_ingestion(monkeypatch):
    marker = {}

    def fake_handler(event, context):
        marker["called"] = True
        return {"statusCode": 200}

    monkeypatch.setattr(main.event_ingestion, "lambda_handler", fake_handler)
    event = {"requestContext": {"http": {"method": "POST", "path": "/events"}}}
    resp = main.lambda_handler(event, None)
    assert resp["statusCode"] == 200
    assert marker["called"] is True


def test_main_routes_context_with_customer_id(monkeypatch):
    seen = {}

    def fake_handler(event, context):
        seen["params"] = event["pathParameters"]
        return {"ok": True}

    monkeypatch.setattr(main.customer_context, "lambda_handler", fake_handler)
    event = {"requestContext": {"http": {"method": "GET", "path": "/customers/cust_1/context"}}}
    resp = main.lambda_handler(event, None)
    assert resp["ok"] is True
    assert seen["params"] == {"id": "cust_1"}


def test_main_routes_timeline(monkeypatch):
    monkeypatch.setattr(main.customer_context, "timeline_handler", lambda e, c: {"timeline": True})
    event = {"requestContext": {"http": {"method": "GET", "path": "/customers/cust_1/timeline"}}}
    resp = main.lambda_handler(event, None)
    assert resp["timeline"] is True


def test_main_wrong_method_is_not_routed():
    event = {"requestContext": {"http": {"method": "GET", "path": "/events"}}}
    resp = main.lambda_handler(event, None)
    assert resp["statusCode"] == 404


def test_main_unknown_route():
    event = {"requestContext": {"http": {"method": "GET", "path": "/unknown"}}}
    resp = main.lambda_handler(event, None)
    assert resp["statusCode"] == 404
    body = json.loads(resp["body"])
    assert body["message"] == "Route not found"
