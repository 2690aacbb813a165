from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB

from engage_flags.core.db import Base
from engage_flags.core.time import utcnow
from engage_flags.models.enums import (
    EvaluationReasonEnum,
    FlagTypeEnum,
    RolloutStrategyEnum,
    enum_values,
)
from engage_flags.models.mixins import TimestampMixin


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class FeatureFlag(TimestampMixin, Base):
    """Global flag definition. Soft-disabled through is_active, never deleted."""

    __tablename__ = "feature_flags"
    __table_args__ = (
        UniqueConstraint("flag_key", name="uq_feature_flags_flag_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    flag_key = Column(String, nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    flag_type = Column(
        Enum(
            FlagTypeEnum,
            name="feature_flag_type_enum",
            native_enum=False,
            validate_strings=True,
            values_callable=enum_values,
        ),
        nullable=False,
        default=FlagTypeEnum.BOOLEAN,
    )
    # Encoded as text; parsed by flag_type at the engine boundary.
    default_value = Column(Text, nullable=False, default="false")
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class OrganizationFeatureFlag(TimestampMixin, Base):
    __tablename__ = "organization_feature_flags"
    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "flag_key",
            "environment",
            name="uq_organization_feature_flags_org_flag_env",
        ),
        CheckConstraint(
            "rollout_percentage >= 0 AND rollout_percentage <= 100",
            name="ck_organization_feature_flags_rollout_percentage",
        ),
        Index("ix_organization_feature_flags_org", "organization_id"),
        Index("ix_organization_feature_flags_flag", "flag_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False)
    flag_key = Column(String, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=False)
    rollout_percentage = Column(Integer, nullable=False, default=0)
    rollout_strategy = Column(
        Enum(
            RolloutStrategyEnum,
            name="rollout_strategy_enum",
            native_enum=False,
            validate_strings=True,
            values_callable=enum_values,
        ),
        nullable=False,
        default=RolloutStrategyEnum.PERCENTAGE,
    )
    # Strategy-specific settings, e.g. {"whitelist": [1, 2, 3]}.
    rollout_config = Column(JSON_TYPE, nullable=True)
    environment = Column(String, nullable=False, default="production")
    enabled_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    enabled_at = Column(DateTime, nullable=True)


class UserFeatureFlagOverride(TimestampMixin, Base):
    """
    Highest-priority value for one user. Rows past expires_at are ignored at
    read time but kept for history.
    """

    __tablename__ = "user_feature_flag_overrides"
    __table_args__ = (
        UniqueConstraint("user_id", "flag_key", name="uq_user_feature_flag_overrides_user_flag"),
        Index("ix_user_feature_flag_overrides_user", "user_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)
    flag_key = Column(String, nullable=False)
    override_value = Column(Text, nullable=False)
    reason = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


class FeatureFlagEvaluation(Base):
    """Append-only audit of evaluation decisions."""

    __tablename__ = "feature_flag_evaluations"
    __table_args__ = (
        Index("ix_feature_flag_evaluations_flag_created", "flag_key", "created_at"),
        Index("ix_feature_flag_evaluations_org", "organization_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    flag_key = Column(String, nullable=False)
    user_id = Column(Integer, nullable=True)
    organization_id = Column(Integer, nullable=True)
    # Null when the flag is unknown and there was nothing to resolve.
    evaluated_value = Column(Text, nullable=True)
    evaluation_reason = Column(
        Enum(
            EvaluationReasonEnum,
            name="evaluation_reason_enum",
            native_enum=False,
            validate_strings=True,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    environment = Column(String, nullable=False)
    request_context = Column(JSON_TYPE, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
