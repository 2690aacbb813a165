"Tenancy utilities: organization resolution and request correlation."

from .constants import ORGANIZATION_HEADER  # noqa: F401
from .context import resolve_organization_id  # noqa: F401
from .middleware import RequestContextMiddleware  # noqa: F401
