"""budget data documents

Revision ID: 202506010900
Revises:
Create Date: 2025-06-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202506010900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "budget_data",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("month_year", sa.String(length=7), nullable=False),
        sa.Column("incomes", sa.Text(), nullable=False),
        sa.Column("budget_categories", sa.Text(), nullable=False),
        sa.Column("payments", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "month_year", name="uq_budget_data_user_month"),
    )
    op.create_index("ix_budget_data_user", "budget_data", ["user_id"])


def downgrade():
    op.drop_index("ix_budget_data_user", table_name="budget_data")
    op.drop_table("budget_data")
