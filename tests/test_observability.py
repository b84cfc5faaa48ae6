import json
import logging

from fastapi.testclient import TestClient

from wellovis.logging_utils import ContextFilter, JSONLogFormatter
from wellovis.main import app, rate_limiter


client = TestClient(app)


def test_health_endpoint():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_metrics_endpoint():
    client.get("/health")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "wellovis_api_requests_total" in response.text
    assert response.headers["content-type"].startswith("text/plain")


def test_request_id_is_echoed():
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_tenant_routes_require_header():
    response = client.get("/api/v1/tenant")
    assert response.status_code == 400
    assert response.json()["detail"] == "X-Tenant-ID header is required"


def test_invalid_tenant_header():
    response = client.get("/api/v1/tenant", headers={"X-Tenant-ID": "not-a-uuid"})
    assert response.status_code == 400


def test_rate_limit_returns_retry_after(monkeypatch):
    monkeypatch.setattr(rate_limiter, "limit", 1)

    assert client.get("/api/v1/tenant").status_code == 400
    limited = client.get("/api/v1/tenant")
    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) >= 1

    assert client.get("/health").status_code == 200


def test_json_logs_redact_sensitive_extras():
    record = logging.makeLogRecord(
        {"msg": "token refreshed", "levelname": "INFO", "access_token": "ya29.secret", "events": 2}
    )
    ContextFilter().filter(record)

    entry = json.loads(JSONLogFormatter().format(record))
    assert entry["message"] == "token refreshed"
    assert entry["access_token"] == "[redacted]"
    assert entry["events"] == 2
