"""async tasks

Revision ID: 0003_async_tasks
Revises: 0002_model_credit_ledger
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "0003_async_tasks"
down_revision = "0002_model_credit_ledger"
branch_labels = None
depends_on = None


def _table_names() -> set[str]:
    from sqlalchemy import inspect as sa_inspect
    return set(sa_inspect(op.get_bind()).get_table_names())


def upgrade() -> None:
    if "async_tasks" in _table_names():
        return
    op.create_table(
        "async_tasks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=True),
        sa.Column("type", sa.Enum("THREED_GENERATION", name="asynctasktype"), nullable=True),
        sa.Column("status", sa.Enum("PENDING", "PROCESSING", "SUCCESS", "ERROR", name="asynctaskstatus"), nullable=True),
        sa.Column("provider", sa.String(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("params", sa.JSON(), nullable=True),
        sa.Column("estimated_credits", sa.Integer(), nullable=True),
        sa.Column("credits_charged", sa.Integer(), nullable=True),
        sa.Column("asset", sa.JSON(), nullable=True),
        sa.Column("error", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_async_tasks_id", "async_tasks", ["id"])
    op.create_index("ix_async_tasks_user_id", "async_tasks", ["user_id"])
    op.create_index("ix_async_tasks_organization_id", "async_tasks", ["organization_id"])
    op.create_index("ix_async_tasks_status", "async_tasks", ["status"])


def downgrade() -> None:
    op.drop_table("async_tasks")
    if op.get_bind().dialect.name == "postgresql":
        op.execute(sa.text("DROP TYPE IF EXISTS asynctaskstatus"))
        op.execute(sa.text("DROP TYPE IF EXISTS asynctasktype"))
