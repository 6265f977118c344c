"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with the envelope, service name and version
  - No authentication required
  - Never rate limited
  - Unknown routes answer with the NOT_FOUND envelope
"""

from __future__ import annotations


def test_health_returns_200_with_service_info(api_client):
    """Health endpoint returns 200 with the liveness envelope."""
    client, _ = api_client
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["service"] == "auth-service"
    assert "version" in data
    assert "timestamp" in data


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _ = api_client
    resp = client.get("/health", headers={})
    assert resp.status_code == 200


def test_health_is_not_rate_limited(api_client):
    """Load balancer probes must never see a 429."""
    client, _ = api_client
    for _ in range(110):
        assert client.get("/health").status_code == 200


def test_unknown_route_returns_not_found_envelope(api_client):
    client, _ = api_client
    resp = client.get("/api/auth/nope")
    assert resp.status_code == 404
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "NOT_FOUND"
