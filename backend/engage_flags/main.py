# This file bootstraps the FastAPI app, wires up the logging, metrics and
# request-context middlewares, maps flag errors to JSON envelopes and
# mounts the feature flag router on the versioned and legacy prefixes.

import logging
import os

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError

import engage_flags.models  # noqa: F401  (registers tables on Base.metadata)
from engage_flags.api.feature_flags import router as feature_flags_router
from engage_flags.core.db import Base, engine
from engage_flags.core.logging import APILoggingMiddleware
from engage_flags.core.metrics import MetricsMiddleware
from engage_flags.core.versioning import API_PREFIX, API_V1_PREFIX
from engage_flags.flags.errors import FlagError
from engage_flags.flags.middleware import FeatureFlagDebugMiddleware
from engage_flags.tenancy.middleware import RequestContextMiddleware


logger = logging.getLogger(__name__)

# Create tables on boot for local runs; deployments run Alembic instead.
if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="Engage Flags")


def _error_response(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    content = {"success": False, "error": code, "message": message}
    content.update(extra)
    response = JSONResponse(status_code=status_code, content=content)
    response.headers["X-Error-Code"] = code
    return response


@app.exception_handler(FlagError)
def handle_flag_error(_request: Request, exc: FlagError):
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    response.headers["X-Error-Code"] = exc.code
    return response


@app.exception_handler(RequestValidationError)
def handle_request_validation(_request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return _error_response(
        400,
        "validation_error",
        message,
        details=[
            {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg")}
            for error in errors
        ],
    )


@app.exception_handler(SQLAlchemyError)
def handle_database_error(request: Request, exc: SQLAlchemyError):
    logger.error(
        "request.database_error",
        extra={"path": request.url.path, "error": exc.__class__.__name__},
        exc_info=exc,
    )
    return _error_response(500, "database_error", "The request could not be completed")


# Observability layers
app.add_middleware(APILoggingMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(FeatureFlagDebugMiddleware)

api_v1 = APIRouter(prefix=API_V1_PREFIX)
api_legacy = APIRouter(prefix=API_PREFIX)

for r in [feature_flags_router]:
    api_v1.include_router(r)
    api_legacy.include_router(r)

app.include_router(api_v1)
app.include_router(api_legacy)

# Attach request context (request_id, organization) before anything else runs.
app.add_middleware(RequestContextMiddleware)


# /metrics endpoint (Prometheus scraping)
@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/ping")
@app.get(f"{API_V1_PREFIX}/health")
def ping():
    return {"message": "pong"}
