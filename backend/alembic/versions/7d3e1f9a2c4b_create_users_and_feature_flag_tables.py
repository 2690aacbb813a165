"""create users and feature flag tables

Revision ID: 7d3e1f9a2c4b
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "7d3e1f9a2c4b"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    json_type = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column(
            "role",
            sa.Enum("member", "admin", "corporate_admin", name="user_role_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("organization_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_users_id"), "users", ["id"], unique=False)
    op.create_index(op.f("ix_users_username"), "users", ["username"], unique=True)
    op.create_index(op.f("ix_users_organization_id"), "users", ["organization_id"], unique=False)

    op.create_table(
        "feature_flags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("flag_key", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "flag_type",
            sa.Enum("boolean", "string", "number", "json", name="feature_flag_type_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("default_value", sa.Text(), nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("flag_key", name="uq_feature_flags_flag_key"),
    )
    op.create_index(op.f("ix_feature_flags_id"), "feature_flags", ["id"], unique=False)

    op.create_table(
        "organization_feature_flags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("flag_key", sa.String(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rollout_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "rollout_strategy",
            sa.Enum("percentage", "whitelist", "all", name="rollout_strategy_enum", native_enum=False),
            nullable=False,
        ),
        sa.Column("rollout_config", json_type, nullable=True),
        sa.Column("environment", sa.String(), nullable=False, server_default="production"),
        sa.Column("enabled_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("enabled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "organization_id",
            "flag_key",
            "environment",
            name="uq_organization_feature_flags_org_flag_env",
        ),
        sa.CheckConstraint(
            "rollout_percentage >= 0 AND rollout_percentage <= 100",
            name="ck_organization_feature_flags_rollout_percentage",
        ),
    )
    op.create_index(op.f("ix_organization_feature_flags_id"), "organization_feature_flags", ["id"], unique=False)
    op.create_index("ix_organization_feature_flags_org", "organization_feature_flags", ["organization_id"])
    op.create_index("ix_organization_feature_flags_flag", "organization_feature_flags", ["flag_key"])

    op.create_table(
        "user_feature_flag_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("flag_key", sa.String(), nullable=False),
        sa.Column("override_value", sa.Text(), nullable=False),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "flag_key", name="uq_user_feature_flag_overrides_user_flag"),
    )
    op.create_index(op.f("ix_user_feature_flag_overrides_id"), "user_feature_flag_overrides", ["id"], unique=False)
    op.create_index("ix_user_feature_flag_overrides_user", "user_feature_flag_overrides", ["user_id"])

    op.create_table(
        "feature_flag_evaluations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("flag_key", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("organization_id", sa.Integer(), nullable=True),
        sa.Column("evaluated_value", sa.Text(), nullable=True),
        sa.Column(
            "evaluation_reason",
            sa.Enum(
                "user_override",
                "org_rollout",
                "org_enabled",
                "org_disabled",
                "default",
                "unknown_flag",
                name="evaluation_reason_enum",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("environment", sa.String(), nullable=False),
        sa.Column("request_context", json_type, nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_feature_flag_evaluations_id"), "feature_flag_evaluations", ["id"], unique=False)
    op.create_index(
        "ix_feature_flag_evaluations_flag_created",
        "feature_flag_evaluations",
        ["flag_key", "created_at"],
    )
    op.create_index("ix_feature_flag_evaluations_org", "feature_flag_evaluations", ["organization_id"])


def downgrade() -> None:
    op.drop_index("ix_feature_flag_evaluations_org", table_name="feature_flag_evaluations")
    op.drop_index("ix_feature_flag_evaluations_flag_created", table_name="feature_flag_evaluations")
    op.drop_index(op.f("ix_feature_flag_evaluations_id"), table_name="feature_flag_evaluations")
    op.drop_table("feature_flag_evaluations")
    op.drop_index("ix_user_feature_flag_overrides_user", table_name="user_feature_flag_overrides")
    op.drop_index(op.f("ix_user_feature_flag_overrides_id"), table_name="user_feature_flag_overrides")
    op.drop_table("user_feature_flag_overrides")
    op.drop_index("ix_organization_feature_flags_flag", table_name="organization_feature_flags")
    op.drop_index("ix_organization_feature_flags_org", table_name="organization_feature_flags")
    op.drop_index(op.f("ix_organization_feature_flags_id"), table_name="organization_feature_flags")
    op.drop_table("organization_feature_flags")
    op.drop_index(op.f("ix_feature_flags_id"), table_name="feature_flags")
    op.drop_table("feature_flags")
    op.drop_index(op.f("ix_users_organization_id"), table_name="users")
    op.drop_index(op.f("ix_users_username"), table_name="users")
    op.drop_index(op.f("ix_users_id"), table_name="users")
    op.drop_table("users")
