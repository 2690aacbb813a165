"""
Storage seams for the evaluation engine.

The engine talks to four narrow stores instead of a session, so it can be
exercised with in-memory fakes. The SQL implementations below delegate to
the crud layer and hand back plain snapshots, never ORM rows, which keeps
definitions safe to cache. They run on their own sessions, apart from the
request handler's session, so audit writes are never part of its transaction.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Protocol

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

from engage_flags import crud
from engage_flags.core.cache import db_scope_id
from engage_flags.models.enums import EvaluationReasonEnum


def _enum_value(value):
    return getattr(value, "value", value)


@dataclass(frozen=True)
class FlagDefinition:
    flag_key: str
    name: str
    flag_type: str
    default_value: str
    is_active: bool = True
    description: str | None = None

    def to_cache(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_cache(cls, payload: dict[str, Any]) -> "FlagDefinition":
        return cls(**payload)

    @classmethod
    def from_row(cls, row) -> "FlagDefinition":
        return cls(
            flag_key=row.flag_key,
            name=row.name,
            flag_type=_enum_value(row.flag_type),
            default_value=row.default_value,
            is_active=bool(row.is_active),
            description=row.description,
        )


@dataclass(frozen=True)
class OrganizationOverride:
    organization_id: int
    flag_key: str
    environment: str
    is_enabled: bool
    rollout_percentage: int = 0
    rollout_strategy: str = "percentage"
    rollout_config: Any = None

    @classmethod
    def from_row(cls, row) -> "OrganizationOverride":
        return cls(
            organization_id=row.organization_id,
            flag_key=row.flag_key,
            environment=row.environment,
            is_enabled=bool(row.is_enabled),
            rollout_percentage=row.rollout_percentage,
            rollout_strategy=_enum_value(row.rollout_strategy),
            rollout_config=row.rollout_config,
        )


@dataclass(frozen=True)
class UserOverride:
    user_id: int
    flag_key: str
    override_value: str
    reason: str | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> "UserOverride":
        return cls(
            user_id=row.user_id,
            flag_key=row.flag_key,
            override_value=row.override_value,
            reason=row.reason,
            expires_at=row.expires_at,
        )


@dataclass
class EvaluationRecord:
    flag_key: str
    user_id: int | None
    organization_id: int | None
    evaluated_value: str | None
    evaluation_reason: EvaluationReasonEnum
    environment: str
    request_context: dict[str, Any] | None = None

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


class FlagStore(Protocol):
    def get(self, flag_key: str) -> FlagDefinition | None:
        ...

    def upsert(self, flag_key: str, **fields: Any) -> FlagDefinition:
        ...


class OrganizationOverrideStore(Protocol):
    def get(self, organization_id: int, flag_key: str, environment: str) -> OrganizationOverride | None:
        ...

    def upsert(self, organization_id: int, flag_key: str, **config: Any) -> OrganizationOverride:
        ...

    def delete(self, organization_id: int, flag_key: str, environment: str) -> bool:
        ...


class UserOverrideStore(Protocol):
    # Returns the stored row even when expired; expiry is judged by the engine.
    def get(self, user_id: int, flag_key: str) -> UserOverride | None:
        ...

    def upsert(self, user_id: int, flag_key: str, override_value: str, **fields: Any) -> UserOverride:
        ...

    def delete(self, user_id: int, flag_key: str) -> bool:
        ...


class EvaluationAuditLog(Protocol):
    def append(self, records: list[EvaluationRecord]) -> None:
        ...


class _SqlStore:
    # Every call runs in its own short-lived session on the caller's database,
    # so engine reads and audit commits never touch the caller's transaction.
    def __init__(self, bind: Engine | Connection) -> None:
        self.bind = bind

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(bind=self.bind, autoflush=False, expire_on_commit=False) as session:
            yield session


class SqlFlagStore(_SqlStore):
    def get(self, flag_key: str) -> FlagDefinition | None:
        with self._session() as db:
            row = crud.get_flag(db, flag_key)
            return FlagDefinition.from_row(row) if row else None

    def upsert(self, flag_key: str, **fields: Any) -> FlagDefinition:
        with self._session() as db:
            return FlagDefinition.from_row(crud.upsert_flag(db, flag_key, **fields))


class SqlOrganizationOverrideStore(_SqlStore):
    def get(self, organization_id: int, flag_key: str, environment: str) -> OrganizationOverride | None:
        with self._session() as db:
            row = crud.get_organization_flag(db, organization_id, flag_key, environment)
            return OrganizationOverride.from_row(row) if row else None

    def upsert(self, organization_id: int, flag_key: str, **config: Any) -> OrganizationOverride:
        with self._session() as db:
            row = crud.set_organization_flag(db, flag_key, organization_id, **config)
            return OrganizationOverride.from_row(row)

    def delete(self, organization_id: int, flag_key: str, environment: str) -> bool:
        with self._session() as db:
            return crud.delete_organization_flag(db, organization_id, flag_key, environment)


class SqlUserOverrideStore(_SqlStore):
    def get(self, user_id: int, flag_key: str) -> UserOverride | None:
        with self._session() as db:
            row = crud.get_user_override(db, user_id, flag_key)
            return UserOverride.from_row(row) if row else None

    def upsert(self, user_id: int, flag_key: str, override_value: str, **fields: Any) -> UserOverride:
        with self._session() as db:
            row = crud.set_user_override(db, flag_key, user_id, override_value, **fields)
            return UserOverride.from_row(row)

    def delete(self, user_id: int, flag_key: str) -> bool:
        with self._session() as db:
            return crud.remove_user_override(db, flag_key, user_id)


class SqlEvaluationAuditLog(_SqlStore):
    def append(self, records: list[EvaluationRecord]) -> None:
        with self._session() as db:
            crud.record_evaluations(db, [record.to_row() for record in records])


def _noop() -> None:
    return None


@dataclass
class FlagStores:
    """
    The engine's view of storage. `recover` is called after a failed read
    or write, for stores that share one transaction across calls and need
    it reset before the next operation.
    """

    flags: FlagStore
    organization_overrides: OrganizationOverrideStore
    user_overrides: UserOverrideStore
    audit_log: EvaluationAuditLog
    recover: Callable[[], None] = field(default=_noop)
    # Distinguishes caches when one process serves several databases.
    cache_scope: str | None = None


def sql_flag_stores(db: Session) -> FlagStores:
    """
    SQL stores on the same database as `db`. The session itself is only used
    to find the bind: pending work on it is neither flushed, committed nor
    rolled back by evaluation.
    """
    bind = db.get_bind()
    return FlagStores(
        flags=SqlFlagStore(bind),
        organization_overrides=SqlOrganizationOverrideStore(bind),
        user_overrides=SqlUserOverrideStore(bind),
        audit_log=SqlEvaluationAuditLog(bind),
        cache_scope=db_scope_id(db),
    )
