"""mappings, decisions and annual budgets

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "category_mappings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("merchant_pattern", sa.String(length=200), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("subcategory", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "decisions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user", sa.String(length=60), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("statement_name", sa.String(length=120), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("merchant", sa.String(length=200), nullable=False),
        sa.Column("amount", sa.String(length=40), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("subcategory", sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "(category IS NULL AND subcategory IS NULL)"
            " OR (category IS NOT NULL AND subcategory IS NOT NULL)",
            name="ck_decisions_resolution_pair",
        ),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_decisions_month"),
    )
    op.create_index(
        "ix_decisions_user_year_month", "decisions", ["user", "year", "month"]
    )

    op.create_table(
        "annual_budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("subcategory", sa.String(length=100), nullable=True),
        sa.Column("allocated_amount", sa.String(length=40), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("start_date <= end_date", name="ck_annual_budget_range"),
        sa.UniqueConstraint(
            "category",
            "subcategory",
            "start_date",
            name="uq_annual_budget_scope_start",
        ),
    )
    op.create_index(
        "ix_annual_budget_category_start",
        "annual_budgets",
        ["category", "start_date"],
    )


def downgrade() -> None:
    op.drop_index("ix_annual_budget_category_start", table_name="annual_budgets")
    op.drop_table("annual_budgets")
    op.drop_index("ix_decisions_user_year_month", table_name="decisions")
    op.drop_table("decisions")
    op.drop_table("category_mappings")
