"""Tests for health check endpoint."""

import pytest
from http.server import BaseHTTPRequestHandler
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))
from api.health import handler
from realer.services.orchestrator import set_orchestrator
from tests.utils.helpers import call_handler


@pytest.mark.unit
def test_health_handler_class():
    """Test that handler is a BaseHTTPRequestHandler subclass."""
    assert issubclass(handler, BaseHTTPRequestHandler)


@pytest.mark.unit
def test_health_get_request(orchestrator):
    """Test GET request to health endpoint."""
    set_orchestrator(orchestrator)

    status, payload, headers = call_handler(handler, "GET", "/api/health")

    assert status == 200
    assert payload["status"] == "ok"
    assert payload["service"] == "realer-engine"
    assert payload["store_backend"] == "memory"
    assert payload["feed"] == {"recipients": 0, "subscriptions": 0}
    headers.assert_any_call('Content-Type', 'application/json')


@pytest.mark.unit
def test_health_post_request(orchestrator):
    """Test POST request to health endpoint."""
    set_orchestrator(orchestrator)

    status, payload, _ = call_handler(handler, "POST", "/api/health")

    assert status == 200
    assert payload["status"] == "ok"


@pytest.mark.unit
def test_health_echoes_correlation_id(orchestrator):
    set_orchestrator(orchestrator)

    _, _, headers = call_handler(handler, "GET", "/api/health", headers={"X-Correlation-ID": "req-123"})

    headers.assert_any_call('X-Correlation-ID', 'req-123')
