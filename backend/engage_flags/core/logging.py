# This middleware records a structured JSON log for each request.
# It captures latency, route, organization, user, and request_id for traceability.

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from time import monotonic
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from engage_flags.core.config import settings
from engage_flags.core.security import decode_access_token


_STANDARD_ATTRS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}

_ALWAYS_FIELDS = {
    "request_id",
    "organization_id",
    "user_id",
    "route",
    "method",
    "status_code",
    "duration_ms",
    "error_code",
}


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            if value is None and key not in _ALWAYS_FIELDS:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


def get_structured_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    logger.addHandler(handler)
    logger.setLevel((settings.LOG_LEVEL or "INFO").upper())
    logger.propagate = False
    return logger


logger = get_structured_logger("api_logger")


def _resolve_route(request: Request) -> str:
    route = request.scope.get("route")
    route_path = getattr(route, "path", None)
    return route_path or request.url.path


def _resolve_user_id(request: Request) -> str | None:
    auth = request.headers.get("Authorization")
    if auth and auth.startswith("Bearer "):
        token = auth.split()[1]
        try:
            payload = decode_access_token(token)
            return payload.get("user_id") or payload.get("sub")
        except Exception:
            return None
    return None


def _request_extra(request: Request, *, status_code: int, duration_ms: float, error_code: str | None) -> dict:
    return {
        "request_id": getattr(request.state, "request_id", None),
        "organization_id": getattr(request.state, "organization_id", None),
        "user_id": _resolve_user_id(request),
        "route": _resolve_route(request),
        "path": request.url.path,
        "method": request.method,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "error_code": error_code,
    }


class APILoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = round((monotonic() - start) * 1000.0, 2)
            logger.exception(
                "request.failed",
                extra=_request_extra(
                    request,
                    status_code=500,
                    duration_ms=duration_ms,
                    error_code="unhandled_exception",
                ),
            )
            raise

        duration_ms = round((monotonic() - start) * 1000.0, 2)
        logger.info(
            "request.completed",
            extra=_request_extra(
                request,
                status_code=response.status_code,
                duration_ms=duration_ms,
                error_code=response.headers.get("X-Error-Code"),
            ),
        )
        return response
