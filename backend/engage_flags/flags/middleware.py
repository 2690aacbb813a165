import json

from starlette.middleware.base import BaseHTTPMiddleware

from engage_flags.core.config import settings


class FeatureFlagDebugMiddleware(BaseHTTPMiddleware):
    """
    Echoes the flags a request evaluated in X-Feature-Flags. Development only.
    """

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        if not (settings.FLAG_DEBUG_HEADERS and settings.is_development):
            return response
        flags = getattr(request.state, "feature_flags", None)
        if flags is not None:
            response.headers["X-Feature-Flags"] = json.dumps(
                flags.snapshot(), separators=(",", ":"), sort_keys=True, default=str
            )
        return response
