"""governance core: users projection, feature flags, flag history, admin audit log

Revision ID: f1_governance_core
Revises:
Create Date: 2026-10-19

Also installs:
- get_all_feature_flags(): list view used by the stored-procedure backend
- triggers rejecting UPDATE / DELETE on feature_flag_history and admin_audit_logs
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers
revision = "f1_governance_core"
down_revision = None
branch_labels = None
depends_on = None


GET_ALL_FEATURE_FLAGS = """
CREATE OR REPLACE FUNCTION get_all_feature_flags()
RETURNS TABLE (
    id UUID,
    key VARCHAR,
    name VARCHAR,
    description TEXT,
    is_enabled BOOLEAN,
    flag_type VARCHAR,
    rollout_percentage INTEGER,
    target_plans JSONB,
    target_user_count INTEGER,
    starts_at TIMESTAMPTZ,
    ends_at TIMESTAMPTZ,
    category VARCHAR,
    is_killswitch BOOLEAN,
    created_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ
) AS $$
BEGIN
    RETURN QUERY
    SELECT
        ff.id,
        ff.key,
        ff.name,
        ff.description,
        ff.is_enabled,
        ff.flag_type,
        ff.rollout_percentage,
        ff.target_plans,
        COALESCE(jsonb_array_length(ff.target_user_ids), 0)
            + COALESCE(jsonb_array_length(ff.target_user_emails), 0),
        ff.starts_at,
        ff.ends_at,
        ff.category,
        ff.is_killswitch,
        ff.created_at,
        ff.updated_at
    FROM feature_flags ff
    ORDER BY ff.category, ff.name;
END;
$$ LANGUAGE plpgsql STABLE;
"""

REJECT_MUTATION = """
CREATE OR REPLACE FUNCTION reject_append_only_mutation()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION '% rows are append-only', TG_TABLE_NAME
        USING ERRCODE = 'insufficient_privilege';
END;
$$ LANGUAGE plpgsql;
"""

APPEND_ONLY_TABLES = ("feature_flag_history", "admin_audit_logs")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="user"),
        sa.Column("plan", sa.String(), nullable=True),
        sa.Column("is_suspended", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_external_id", "users", ["external_id"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "feature_flags",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("flag_type", sa.String(), nullable=False, server_default="boolean"),
        sa.Column("rollout_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target_plans", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("target_user_ids", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("target_user_emails", JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("category", sa.String(), nullable=False, server_default="general"),
        sa.Column("is_killswitch", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_by", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("updated_by", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint(
            "rollout_percentage >= 0 AND rollout_percentage <= 100",
            name="ck_feature_flags_rollout_range",
        ),
        sa.CheckConstraint(
            "starts_at IS NULL OR ends_at IS NULL OR starts_at <= ends_at",
            name="ck_feature_flags_date_order",
        ),
        sa.CheckConstraint("key ~ '^[a-z][a-z0-9_]*$'", name="ck_feature_flags_key_format"),
    )
    op.create_index("ix_feature_flags_id", "feature_flags", ["id"])
    op.create_index("ix_feature_flags_key", "feature_flags", ["key"], unique=True)
    op.create_index("ix_feature_flags_is_enabled", "feature_flags", ["is_enabled"])
    op.create_index("ix_feature_flags_category_name", "feature_flags", ["category", "name"])

    # flag_id is not a foreign key: history outlives the flag
    op.create_table(
        "feature_flag_history",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("flag_id", UUID(as_uuid=True), nullable=False),
        sa.Column("flag_key", sa.String(), nullable=False),
        sa.Column("changed_by", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("change_type", sa.String(), nullable=False),
        sa.Column("old_value", JSONB(), nullable=True),
        sa.Column("new_value", JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_feature_flag_history_id", "feature_flag_history", ["id"])
    op.create_index("ix_feature_flag_history_flag_id", "feature_flag_history", ["flag_id"])
    op.create_index("ix_feature_flag_history_changed_at", "feature_flag_history", ["changed_at"])

    op.create_table(
        "admin_audit_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("admin_id", UUID(as_uuid=True), nullable=False),
        sa.Column("admin_email", sa.String(), nullable=False),
        sa.Column("admin_role", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("target_type", sa.String(), nullable=True),
        sa.Column("target_id", sa.String(), nullable=True),
        sa.Column("target_identifier", sa.String(), nullable=True),
        sa.Column("metadata", JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("request_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_audit_logs_id", "admin_audit_logs", ["id"])
    op.create_index("ix_admin_audit_logs_admin_id", "admin_audit_logs", ["admin_id"])
    op.create_index("ix_admin_audit_logs_action", "admin_audit_logs", ["action"])
    op.create_index("ix_admin_audit_logs_created_at", "admin_audit_logs", ["created_at"])
    op.create_index("ix_admin_audit_logs_target", "admin_audit_logs", ["target_type", "target_id"])

    op.execute(GET_ALL_FEATURE_FLAGS)
    op.execute(REJECT_MUTATION)
    for table in APPEND_ONLY_TABLES:
        op.execute(
            f"CREATE TRIGGER {table}_append_only "
            f"BEFORE UPDATE OR DELETE ON {table} "
            f"FOR EACH ROW EXECUTE FUNCTION reject_append_only_mutation()"
        )


def downgrade() -> None:
    for table in APPEND_ONLY_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_append_only ON {table}")
    op.execute("DROP FUNCTION IF EXISTS reject_append_only_mutation()")
    op.execute("DROP FUNCTION IF EXISTS get_all_feature_flags()")

    op.drop_table("admin_audit_logs")
    op.drop_table("feature_flag_history")
    op.drop_table("feature_flags")
    op.drop_table("users")
