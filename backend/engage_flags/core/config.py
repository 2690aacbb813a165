# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# This keeps deployment flexible without hardcoding secrets.

import json
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Core DB connection string, like sqlite:///./app.db or Postgres URL.
    DATABASE_URL: str

    # Secret key used for signing JWTs. Must be kept private in production.
    SECRET_KEY: str

    # JWT algorithm to use. Default HS256 (symmetric HMAC-SHA256).
    ALGORITHM: str = "HS256"

    # How long issued access tokens are valid, in minutes.
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Deployment environment. Also the evaluation environment used when a
    # caller does not name one explicitly.
    APP_ENV: str = "development"

    # Header a client may use to tell us which organization it acts for.
    ORGANIZATION_HEADER_NAME: str = "X-Organization-ID"

    # Environment stored on organization overrides when the admin omits it.
    FLAG_DEFAULT_ENVIRONMENT: str = "production"

    # Flag definitions are cached for this many seconds (0 disables).
    # Overrides are never cached, so a changed override is visible at once.
    FLAG_CACHE_TTL_SECONDS: int = Field(default=300, ge=0)

    # Kill-switch for the evaluation audit trail.
    FLAG_AUDIT_ENABLED: bool = True

    # Echo the request's evaluated flags in an X-Feature-Flags header.
    # Only honoured when APP_ENV is development.
    FLAG_DEBUG_HEADERS: bool = False

    # Admin list pagination cap and analytics window default.
    FLAG_LIST_MAX_LIMIT: int = Field(default=100, gt=0)
    FLAG_ANALYTICS_DEFAULT_DAYS: int = Field(default=30, gt=0)

    # Roles that count as administrators for the flag admin API.
    ADMIN_ROLES: List[str] = Field(default_factory=lambda: ["corporate_admin"])

    # Cache backend: memory, redis or none.
    CACHE_BACKEND: str = "memory"
    REDIS_URL: Optional[str] = None
    CACHE_NAMESPACE: str = "engage_flags"

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    LOG_LEVEL: str = "INFO"

    @field_validator("ADMIN_ROLES", mode="before")
    @classmethod
    def _parse_list_values(cls, value):
        if isinstance(value, str):
            parts = [p.strip() for p in value.split(",") if p.strip()]
            return parts
        return value

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"


# Instantiate a single settings object for app-wide import.
# Any module can just `from engage_flags.core.config import settings`.
settings = Settings()
