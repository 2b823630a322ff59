"""Shared plumbing for the Vercel JSON handlers in ``api/``."""

import asyncio
import json
from http.server import BaseHTTPRequestHandler
from typing import Any, Awaitable, Callable
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel

from realer.utils.errors import RealerError, ValidationError
from realer.utils.logging import correlation_context, get_structured_logger
from realer.utils.logging_config import LoggingConfig

logger = get_structured_logger(__name__)

CORRELATION_HEADER = LoggingConfig.LOG_CORRELATION_ID_HEADER


def run_async(coro: Awaitable) -> Any:
    """Run a coroutine to completion from a synchronous handler."""
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    return value


def query_flag(value: Any) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def query_int(query: dict, name: str, default: int) -> int:
    raw = query.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer", fields=[name])


class JsonHandler(BaseHTTPRequestHandler):
    """BaseHTTPRequestHandler with JSON bodies, error mapping and correlation ids."""

    def read_json(self) -> dict:
        content_length = int(self.headers.get('Content-Length', 0) or 0)
        raw_body = self.rfile.read(content_length).decode('utf-8') if content_length > 0 else ""
        if not raw_body:
            return {}
        try:
            body = json.loads(raw_body)
        except json.JSONDecodeError:
            raise ValidationError("Request body must be valid JSON", fields=["body"])
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object", fields=["body"])
        return body

    def query(self) -> dict:
        parsed = parse_qs(urlparse(self.path).query)
        return {k: v[0] for k, v in parsed.items() if v}

    def send_json(self, status: int, payload: Any) -> None:
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        correlation_id = getattr(self, "_correlation_id", None)
        if correlation_id:
            self.send_header(CORRELATION_HEADER, correlation_id)
        self.end_headers()
        self.wfile.write(json.dumps(to_jsonable(payload)).encode('utf-8'))

    def handle_route(self, route: Callable[[], Awaitable[tuple[int, Any]]]) -> None:
        """Run ``route`` and send its (status, payload); errors become JSON error bodies."""
        LoggingConfig.setup_logging()
        with correlation_context(self.headers.get(CORRELATION_HEADER) or None) as correlation_id:
            self._correlation_id = correlation_id
            try:
                status, payload = run_async(route())
            except RealerError as e:
                level = logger.error if e.status_code >= 500 else logger.info
                level(
                    "Request failed",
                    method=self.command,
                    path=urlparse(self.path).path,
                    code=e.code,
                    status_code=e.status_code,
                    detail=e.detail
                )
                self.send_json(e.status_code, {"error": e.to_dict()})
                return
            except Exception as e:
                logger.error(
                    "Unhandled error",
                    method=self.command,
                    path=urlparse(self.path).path,
                    error=str(e),
                    exc_info=True
                )
                self.send_json(500, {"error": RealerError().to_dict()})
                return
            self.send_json(status, payload)

    def log_message(self, format, *args):
        logger.debug("HTTP " + format % args)
