"""
Lightweight request-scoped context for tenancy-aware operations.
"""

from typing import Optional

from fastapi import Request

from engage_flags.core.config import settings
from engage_flags.tenancy.constants import ORGANIZATION_HEADER


def _parse_organization_id(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    raw = str(value).strip()
    if not raw.isdigit():
        return None
    return int(raw)


def resolve_organization_id(request: Optional[Request], user=None) -> Optional[int]:
    """
    The caller's own organization wins; the header is only a fallback for
    users that do not belong to one (platform operators, service accounts).
    """
    user_org = _parse_organization_id(getattr(user, "organization_id", None))
    if user_org is not None:
        return user_org
    if request is None:
        return None
    header_name = settings.ORGANIZATION_HEADER_NAME or ORGANIZATION_HEADER
    return _parse_organization_id(request.headers.get(header_name))
