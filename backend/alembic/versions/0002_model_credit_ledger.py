"""model credit ledger

Revision ID: 0002_model_credit_ledger
Revises: 0001_organizations_users_rbac
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_model_credit_ledger"
down_revision = "0001_organizations_users_rbac"
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "model_credits" not in existing_tables:
        op.create_table(
            "model_credits",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "organization_id",
                sa.String(length=36),
                sa.ForeignKey("organizations.id", ondelete="CASCADE"),
                nullable=False,
                unique=True,
            ),
            sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )

    if "member_quotas" not in existing_tables:
        op.create_table(
            "member_quotas",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("organization_id", sa.String(length=36), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("limit", sa.Integer(), nullable=True),
            sa.Column("used", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("period", sa.String(length=32), nullable=False, server_default="total"),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.UniqueConstraint("organization_id", "user_id", name="member_quotas_org_user_unique"),
        )
    idxs = existing_indexes("member_quotas")
    if "ix_member_quotas_organization_id" not in idxs:
        op.create_index("ix_member_quotas_organization_id", "member_quotas", ["organization_id"])
    if "ix_member_quotas_user_id" not in idxs:
        op.create_index("ix_member_quotas_user_id", "member_quotas", ["user_id"])

    if "model_usage" not in existing_tables:
        op.create_table(
            "model_usage",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("organization_id", sa.String(length=36), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("usage_type", sa.String(length=32), nullable=False),
            sa.Column("model", sa.String(), nullable=True),
            sa.Column("provider", sa.String(), nullable=True),
            sa.Column("input_tokens", sa.Integer(), nullable=True),
            sa.Column("output_tokens", sa.Integer(), nullable=True),
            sa.Column("total_tokens", sa.Integer(), nullable=True),
            sa.Column("count_used", sa.Integer(), nullable=True),
            sa.Column("credit_cost", sa.Integer(), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("model_usage")
    if "ix_model_usage_organization_id" not in idxs:
        op.create_index("ix_model_usage_organization_id", "model_usage", ["organization_id"])
    if "ix_model_usage_user_id" not in idxs:
        op.create_index("ix_model_usage_user_id", "model_usage", ["user_id"])
    if "ix_model_usage_usage_type" not in idxs:
        op.create_index("ix_model_usage_usage_type", "model_usage", ["usage_type"])
    if "ix_model_usage_created_at" not in idxs:
        op.create_index("ix_model_usage_created_at", "model_usage", ["created_at"])

    if "model_credit_transactions" not in existing_tables:
        op.create_table(
            "model_credit_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("organization_id", sa.String(length=36), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("usage_id", sa.Integer(), sa.ForeignKey("model_usage.id", ondelete="SET NULL"), nullable=True),
            sa.Column("delta", sa.Integer(), nullable=False),
            sa.Column("balance_after", sa.Integer(), nullable=True),
            sa.Column("reason", sa.String(length=64), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("model_credit_transactions")
    if "ix_model_credit_transactions_organization_id" not in idxs:
        op.create_index("ix_model_credit_transactions_organization_id", "model_credit_transactions", ["organization_id"])
    if "ix_model_credit_transactions_user_id" not in idxs:
        op.create_index("ix_model_credit_transactions_user_id", "model_credit_transactions", ["user_id"])
    if "ix_model_credit_transactions_usage_id" not in idxs:
        op.create_index("ix_model_credit_transactions_usage_id", "model_credit_transactions", ["usage_id"])
    if "ix_model_credit_transactions_reason" not in idxs:
        op.create_index("ix_model_credit_transactions_reason", "model_credit_transactions", ["reason"])

    if "ai_models" not in existing_tables:
        op.create_table(
            "ai_models",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider_id", sa.String(length=64), nullable=False),
            sa.Column("model_id", sa.String(length=150), nullable=False),
            sa.Column("display_name", sa.String(), nullable=True),
            sa.Column("model_type", sa.String(length=32), nullable=True),
            sa.Column("pricing", sa.JSON(), nullable=True),
            sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.UniqueConstraint("provider_id", "model_id", name="ai_models_provider_model_unique"),
        )
    idxs = existing_indexes("ai_models")
    if "ix_ai_models_provider_id" not in idxs:
        op.create_index("ix_ai_models_provider_id", "ai_models", ["provider_id"])
    if "ix_ai_models_model_id" not in idxs:
        op.create_index("ix_ai_models_model_id", "ai_models", ["model_id"])


def downgrade() -> None:
    op.drop_table("ai_models")
    op.drop_table("model_credit_transactions")
    op.drop_table("model_usage")
    op.drop_table("member_quotas")
    op.drop_table("model_credits")
