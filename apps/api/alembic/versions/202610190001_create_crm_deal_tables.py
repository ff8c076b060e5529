"""create crm accounts, opportunities and opportunity history

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "crm_account",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "crm_opportunity",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(precision=18, scale=2), nullable=False, server_default="0"),
        sa.Column("stage", sa.String(length=128), nullable=True),
        sa.Column("owner_id", sa.String(length=128), nullable=True),
        sa.Column("close_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("forecasted_close_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stage_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("days_in_stage", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["crm_account.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_crm_opportunity_forecasted_close_date",
        "crm_opportunity",
        ["forecasted_close_date"],
        unique=False,
    )
    op.create_index("ix_crm_opportunity_close_date", "crm_opportunity", ["close_date"], unique=False)
    op.create_index("ix_crm_opportunity_owner_stage", "crm_opportunity", ["owner_id", "stage"], unique=False)
    op.create_index("ix_crm_opportunity_account_id", "crm_opportunity", ["account_id"], unique=False)

    op.create_table(
        "crm_opportunity_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["opportunity_id"], ["crm_opportunity.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_crm_opportunity_history_opportunity",
        "crm_opportunity_history",
        ["opportunity_id", "event_type"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_crm_opportunity_history_opportunity", table_name="crm_opportunity_history")
    op.drop_table("crm_opportunity_history")
    op.drop_index("ix_crm_opportunity_account_id", table_name="crm_opportunity")
    op.drop_index("ix_crm_opportunity_owner_stage", table_name="crm_opportunity")
    op.drop_index("ix_crm_opportunity_close_date", table_name="crm_opportunity")
    op.drop_index("ix_crm_opportunity_forecasted_close_date", table_name="crm_opportunity")
    op.drop_table("crm_opportunity")
    op.drop_table("crm_account")
