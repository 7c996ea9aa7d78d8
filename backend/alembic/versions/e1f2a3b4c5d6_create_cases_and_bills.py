"""Create cases and bills tables

Revision ID: e1f2a3b4c5d6
Revises:
Create Date: 2026-10-19 09:00:00.000000

Bills hold extracted line items plus the analysis flags written back by
POST /api/billing/flags (is_duplicate, duplicate linkage, reasonableness,
benchmark rate).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "e1f2a3b4c5d6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "cases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("case_id", sa.String(30), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("client_name", sa.String(200), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_cases_case_id", "cases", ["case_id"], unique=True)
    op.create_index("ix_cases_status", "cases", ["status"])

    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("case_id", sa.Integer(), sa.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("document_id", sa.String(64), nullable=True),
        sa.Column("provider_name", sa.String(200), nullable=False, server_default=""),
        sa.Column("service_date", sa.Date(), nullable=True),
        sa.Column("service_description", sa.String(500), nullable=False, server_default=""),
        sa.Column("cpt_code", sa.String(10), nullable=True),
        sa.Column("modifier", sa.String(2), nullable=True),
        sa.Column("icd_code", sa.String(10), nullable=True),
        sa.Column("encounter_type", sa.String(50), nullable=True),
        sa.Column("charge_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("balance", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("service_type", sa.String(50), nullable=True),
        sa.Column("is_duplicate", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("duplicate_of_id", sa.Integer(), sa.ForeignKey("bills.id", ondelete="SET NULL"), nullable=True),
        sa.Column("duplicate_type", sa.String(20), nullable=True),
        sa.Column("reasonableness", sa.String(20), nullable=True),
        sa.Column("benchmark_rate", sa.Numeric(12, 2), nullable=True),
        sa.Column("analyzed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_bills_case_id", "bills", ["case_id"])
    op.create_index("ix_bills_service_date", "bills", ["service_date"])
    op.create_index("ix_bills_cpt_code", "bills", ["cpt_code"])


def downgrade() -> None:
    op.drop_index("ix_bills_cpt_code", table_name="bills")
    op.drop_index("ix_bills_service_date", table_name="bills")
    op.drop_index("ix_bills_case_id", table_name="bills")
    op.drop_table("bills")
    op.drop_index("ix_cases_status", table_name="cases")
    op.drop_index("ix_cases_case_id", table_name="cases")
    op.drop_table("cases")
