import importlib

import pytest
from pydantic import ValidationError


def _load_settings(monkeypatch, extra_env=None):
    # Ensure required keys exist for import.
    monkeypatch.setenv("SKIP_MIGRATIONS", "1")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("SECRET_KEY", "secret")
    for key in ("APP_ENV", "FLAG_CACHE_TTL_SECONDS", "ADMIN_ROLES", "FLAG_DEBUG_HEADERS"):
        monkeypatch.delenv(key, raising=False)
    if extra_env:
        for key, value in extra_env.items():
            monkeypatch.setenv(key, value)
    import engage_flags.core.config as config

    importlib.reload(config)
    return config.Settings


def test_settings_defaults(monkeypatch):
    Settings = _load_settings(monkeypatch)
    cfg = Settings(_env_file=None)
    assert cfg.APP_ENV == "development"
    assert cfg.is_development is True
    assert cfg.ORGANIZATION_HEADER_NAME == "X-Organization-ID"
    assert cfg.FLAG_DEFAULT_ENVIRONMENT == "production"
    assert cfg.FLAG_CACHE_TTL_SECONDS == 300
    assert cfg.FLAG_AUDIT_ENABLED is True
    assert cfg.FLAG_DEBUG_HEADERS is False
    assert cfg.FLAG_LIST_MAX_LIMIT == 100
    assert cfg.FLAG_ANALYTICS_DEFAULT_DAYS == 30
    assert cfg.ADMIN_ROLES == ["corporate_admin"]
    assert cfg.ACCESS_TOKEN_EXPIRE_MINUTES == 30


def test_settings_env_overrides(monkeypatch):
    Settings = _load_settings(
        monkeypatch,
        {
            "SECRET_KEY": "override",
            "APP_ENV": "production",
            "ORGANIZATION_HEADER_NAME": "X-Org",
            "FLAG_CACHE_TTL_SECONDS": "0",
            "FLAG_AUDIT_ENABLED": "false",
            "FLAG_DEBUG_HEADERS": "true",
            "ADMIN_ROLES": "corporate_admin, admin",
            "CACHE_BACKEND": "redis",
        },
    )
    cfg = Settings(_env_file=None)
    assert cfg.APP_ENV == "production"
    assert cfg.is_development is False
    assert cfg.ORGANIZATION_HEADER_NAME == "X-Org"
    assert cfg.FLAG_CACHE_TTL_SECONDS == 0
    assert cfg.FLAG_AUDIT_ENABLED is False
    assert cfg.FLAG_DEBUG_HEADERS is True
    assert cfg.ADMIN_ROLES == ["corporate_admin", "admin"]
    assert cfg.CACHE_BACKEND == "redis"
    assert cfg.SECRET_KEY == "override"


def test_settings_reject_negative_cache_ttl(monkeypatch):
    Settings = _load_settings(monkeypatch, {"FLAG_CACHE_TTL_SECONDS": "-5"})
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_settings_require_database_url(monkeypatch):
    Settings = _load_settings(monkeypatch)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
