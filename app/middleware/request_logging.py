"""
Request logging middleware with request ID tracking and context propagation.
"""
import json
import logging
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from app.core.logging_config import _sanitize_data

logger = logging.getLogger(__name__)

request_id_ctx: ContextVar[str] = ContextVar('request_id', default='unknown')
request_path_ctx: ContextVar[str] = ContextVar('request_path', default='unknown')

DEFAULT_STATUS_CODE = 500
SLOW_REQUEST_MS = 10000

# Provider delivery ids reused as request ids so webhook logs can be matched
# against the provider's delivery console.
_DELIVERY_ID_HEADERS = (
    b"x-request-id",
    b"x-github-delivery",
    b"linear-delivery",
)


def _sanitize_response_body(response_body: str) -> str:
    """Mask sensitive fields in a (possibly JSON) response body."""
    if not response_body:
        return response_body
    try:
        return json.dumps(_sanitize_data(json.loads(response_body)))
    except (json.JSONDecodeError, TypeError):
        sanitized = _sanitize_data(response_body)
        return str(sanitized) if sanitized is not None else ""


def _incoming_request_id(headers) -> Optional[str]:
    lookup = {name.lower(): value for name, value in headers}
    for header in _DELIVERY_ID_HEADERS:
        value = lookup.get(header)
        if value:
            return value.decode("latin-1")[:128]
    return None


class RequestLoggingMiddleware:
    """
    ASGI middleware that assigns a request ID, exposes it through context
    variables and the x-request-id response header, and logs request
    completion with timing.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _incoming_request_id(scope.get("headers", [])) or str(uuid.uuid4())
        request_id_ctx.set(request_id)

        start_time = time.time()
        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")
        client_host = scope["client"][0] if scope.get("client") else "unknown"
        request_path_ctx.set(path)

        response_status: Optional[int] = None
        response_body: Optional[str] = None

        async def send_wrapper(message):
            nonlocal response_status, response_body
            if message["type"] == "http.response.start":
                response_status = message.get("status", DEFAULT_STATUS_CODE)
                headers = list(message.get("headers", []))
                headers.append([b"x-request-id", request_id.encode()])
                message["headers"] = headers
            elif message["type"] == "http.response.body":
                body = message.get("body", b"")
                if body and response_status and 400 <= response_status < 500:
                    try:
                        response_body = body.decode("utf-8")[:1000]
                    except UnicodeDecodeError:
                        pass
            await send(message)

        log_extra = {
            "request_id": request_id,
            "method": method,
            "path": path,
            "client_ip": client_host,
        }

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            logger.error(
                "Request failed with exception",
                extra={**log_extra, "error": str(e), "event": "request_exception"},
                exc_info=True,
            )
            raise
        finally:
            duration_ms = round((time.time() - start_time) * 1000, 2)
            status_code = response_status or DEFAULT_STATUS_CODE
            log_extra.update(status_code=status_code, duration_ms=duration_ms, event="request_complete")

            if duration_ms >= SLOW_REQUEST_MS:
                logger.warning("Slow request", extra=log_extra)

            if status_code >= 500:
                logger.error("Request completed with server error", extra=log_extra)
            elif status_code >= 400:
                if response_body:
                    log_extra["response_body"] = _sanitize_response_body(response_body)
                logger.warning("Request completed with client error", extra=log_extra)
            else:
                logger.info("Request completed successfully", extra=log_extra)
