"""Test helper functions."""

import json
from io import BytesIO
from typing import Any, Dict, Optional
from unittest.mock import Mock

from realer.models.offer import Offer
from realer.models.waitlist import WaitlistRequest
from tests.utils.factories import create_contact


async def grant_access(orchestrator, property_id: str, buyer_id: str, owner_id: str) -> WaitlistRequest:
    """Request access as ``buyer_id`` and accept it as ``owner_id``."""
    request = await orchestrator.request_access(property_id, buyer_id, create_contact())
    return await orchestrator.decide(request.id, owner_id, "accept")


async def open_offer(orchestrator, property_id: str, buyer_id: str, owner_id: str,
                     amount: int = 300000) -> Offer:
    """Grant access and submit an offer in one step."""
    await grant_access(orchestrator, property_id, buyer_id, owner_id)
    return await orchestrator.create_offer(property_id, buyer_id, amount)


def call_handler(handler_cls, method: str, path: str, body: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None) -> tuple[int, Dict[str, Any], Mock]:
    """Drive a BaseHTTPRequestHandler subclass in-process.

    Returns (status, json body, send_header mock).
    """
    raw = json.dumps(body).encode('utf-8') if body is not None else b""
    lines = [f"{method} {path} HTTP/1.1", f"Content-Length: {len(raw)}", "Content-Type: application/json"]
    for name, value in (headers or {}).items():
        lines.append(f"{name}: {value}")
    request = ("\r\n".join(lines) + "\r\n\r\n").encode('utf-8') + raw

    class MockSocket:
        def makefile(self, *args, **kwargs):
            return BytesIO(request)

        def sendall(self, data):
            pass

        def close(self):
            pass

    # BaseHTTPRequestHandler parses the request line and headers in __init__,
    # then dispatches do_<METHOD>; responses are captured from wfile
    sent = {}
    header_mock = Mock()

    class Captured(handler_cls):
        def setup(self):
            super().setup()
            self.wfile = BytesIO()

        def send_response(self, code, message=None):
            sent["status"] = code

        def send_header(self, keyword, value):
            header_mock(keyword, value)

        def end_headers(self):
            pass

        def finish(self):
            sent["body"] = self.wfile.getvalue()

    Captured(MockSocket(), ("127.0.0.1", 8000), None)
    payload = json.loads(sent["body"].decode('utf-8')) if sent.get("body") else {}
    return sent.get("status"), payload, header_mock
