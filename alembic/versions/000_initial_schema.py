"""Initial commission engine schema

Revision ID: 000_initial_schema
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision: str = "000_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(table: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table in insp.get_table_names()


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create commission engine tables."""

    # Partners (owned by the sales subsystem)
    if not _table_exists("partners"):
        op.create_table(
            "partners",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("partner_type", sa.String(50), nullable=True),
            sa.Column("average_rating", sa.Numeric(3, 2), server_default="0", nullable=False),
            sa.Column("joined_on", sa.Date(), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_partners_organization_id", "partners", ["organization_id"])

    # Sales (owned by the sales subsystem)
    if not _table_exists("sales"):
        op.create_table(
            "sales",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("partner_id", sa.Integer(), sa.ForeignKey("partners.id"), nullable=True),
            sa.Column("sale_price", sa.Numeric(14, 2), nullable=False),
            sa.Column("base_price", sa.Numeric(14, 2), nullable=True),
            sa.Column("unit_type", sa.String(30), nullable=False),
            sa.Column("booking_date", sa.Date(), nullable=False),
            *_timestamps(),
        )
        op.create_index("ix_sales_organization_id", "sales", ["organization_id"])
        op.create_index("ix_sales_partner_id", "sales", ["partner_id"])
        op.create_index("ix_sales_booking_date", "sales", ["booking_date"])

    # Commission rules
    if not _table_exists("commission_rules"):
        op.create_table(
            "commission_rules",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column(
                "calculation_method",
                sa.Enum("flat", "tiered", "per_unit_type", name="calculationmethod"),
                nullable=False,
            ),
            sa.Column(
                "calculation_basis",
                sa.Enum("sale_price", "base_price", name="calculationbasis"),
                nullable=False,
            ),
            sa.Column("base_rate", sa.Numeric(7, 4), server_default="0", nullable=False),
            sa.Column("tiers", sa.JSON(), nullable=False),
            sa.Column("unit_type_rates", sa.JSON(), nullable=False),
            sa.Column("bonus_rules", sa.JSON(), nullable=False),
            sa.Column("deduction_rules", sa.JSON(), nullable=False),
            sa.Column("tax_settings", sa.JSON(), nullable=False),
            sa.Column("payment_terms", sa.JSON(), nullable=False),
            sa.Column("approval_policy", sa.JSON(), nullable=False),
            sa.Column("clawback_policy", sa.JSON(), nullable=False),
            sa.Column("valid_from", sa.Date(), nullable=False),
            sa.Column("valid_until", sa.Date(), nullable=False),
            sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
            sa.Column("total_partners_using", sa.Integer(), server_default="0", nullable=False),
            sa.Column("total_commission_paid", sa.Numeric(14, 2), server_default="0", nullable=False),
            sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            *_timestamps(),
        )
        op.create_index("ix_commission_rules_organization_id", "commission_rules", ["organization_id"])
        op.create_index("ix_commission_rules_calculation_method", "commission_rules", ["calculation_method"])
        op.create_index("ix_commission_rules_is_active", "commission_rules", ["is_active"])

    # Partner commissions
    if not _table_exists("partner_commissions"):
        op.create_table(
            "partner_commissions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("sale_id", sa.Integer(), sa.ForeignKey("sales.id"), nullable=False),
            sa.Column("partner_id", sa.Integer(), sa.ForeignKey("partners.id"), nullable=False),
            sa.Column("rule_id", sa.Integer(), sa.ForeignKey("commission_rules.id"), nullable=False),
            sa.Column(
                "status",
                sa.Enum(
                    "pending_approval",
                    "approved",
                    "partially_paid",
                    "paid",
                    "rejected",
                    "clawed_back",
                    name="commissionstatus",
                ),
                nullable=False,
            ),
            sa.Column("sale_snapshot", sa.JSON(), nullable=False),
            sa.Column("performance_snapshot", sa.JSON(), nullable=False),
            sa.Column("calculation", sa.JSON(), nullable=False),
            sa.Column("payment_schedule", sa.JSON(), nullable=False),
            sa.Column("payment_details", sa.JSON(), nullable=False),
            sa.Column("tax_details", sa.JSON(), nullable=False),
            sa.Column("approval_workflow", sa.JSON(), nullable=False),
            sa.Column("clawback_details", sa.JSON(), nullable=False),
            sa.Column("adjustments", sa.JSON(), nullable=False),
            sa.Column("net_commission", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_paid", sa.Numeric(14, 2), server_default="0", nullable=False),
            sa.Column("total_pending", sa.Numeric(14, 2), nullable=False),
            sa.Column("created_by", sa.Integer(), nullable=False),
            sa.Column("last_modified_by", sa.Integer(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False),
            *_timestamps(),
            sa.UniqueConstraint("sale_id", "partner_id", name="uq_commission_sale_partner"),
        )
        op.create_index("ix_partner_commissions_organization_id", "partner_commissions", ["organization_id"])
        op.create_index("ix_partner_commissions_sale_id", "partner_commissions", ["sale_id"])
        op.create_index("ix_partner_commissions_partner_id", "partner_commissions", ["partner_id"])
        op.create_index("ix_partner_commissions_rule_id", "partner_commissions", ["rule_id"])
        op.create_index("ix_partner_commissions_status", "partner_commissions", ["status"])


def downgrade() -> None:
    """Drop commission engine tables."""
    if _table_exists("partner_commissions"):
        op.drop_table("partner_commissions")
        sa.Enum(name="commissionstatus").drop(op.get_bind(), checkfirst=True)
    if _table_exists("commission_rules"):
        op.drop_table("commission_rules")
        sa.Enum(name="calculationbasis").drop(op.get_bind(), checkfirst=True)
        sa.Enum(name="calculationmethod").drop(op.get_bind(), checkfirst=True)
    if _table_exists("sales"):
        op.drop_table("sales")
    if _table_exists("partners"):
        op.drop_table("partners")
