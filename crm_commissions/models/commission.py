"""
PartnerCommission model: one commission record per (sale, partner).
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, ForeignKey, Integer, UniqueConstraint
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from crm_commissions.models.base import Base, Money, TimestampMixin


class CommissionStatus(str, Enum):
    """Lifecycle status of a commission record."""
    PENDING_APPROVAL = "pending_approval"  # Waiting for approver decisions
    APPROVED = "approved"                  # Payable, nothing paid yet
    PARTIALLY_PAID = "partially_paid"      # Some payments recorded
    PAID = "paid"                          # Fully paid (terminal)
    REJECTED = "rejected"                  # Rejected by an approver (terminal)
    CLAWED_BACK = "clawed_back"            # Reclaimed after payout (terminal)


TERMINAL_STATUSES = frozenset({
    CommissionStatus.PAID,
    CommissionStatus.REJECTED,
    CommissionStatus.CLAWED_BACK,
})

PAYABLE_STATUSES = frozenset({
    CommissionStatus.APPROVED,
    CommissionStatus.PARTIALLY_PAID,
})


class InstallmentStatus(str, Enum):
    """Status of one scheduled payout."""
    PENDING = "pending"
    PAID = "paid"


class PaymentMethod(str, Enum):
    """How a payout was made (bookkeeping only)."""
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    CASH = "cash"
    ONLINE = "online"
    ADJUSTMENT = "adjustment"


class ApprovalStatus(str, Enum):
    """Outcome of the approval workflow."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AdjustmentType(str, Enum):
    """Kinds of entries in the adjustment log."""
    AMOUNT_INCREASE = "amount_increase"
    AMOUNT_DECREASE = "amount_decrease"
    CLAWBACK = "clawback"
    HOLD_APPLIED = "hold_applied"
    HOLD_RELEASED = "hold_released"


class PartnerCommission(Base, TimestampMixin):
    """
    Commission earned by a partner on a sale.

    Snapshots, calculation, schedule, workflow and adjustment log are kept
    as JSON documents; net/paid/pending amounts are mirrored into numeric
    columns for querying.

    The (sale_id, partner_id) pair is unique at the storage level, and
    ``version`` is checked on every UPDATE to detect lost updates.
    """

    __tablename__ = "partner_commissions"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    project_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )
    sale_id: Mapped[int] = mapped_column(
        ForeignKey("sales.id"),
        nullable=False,
        index=True,
    )
    partner_id: Mapped[int] = mapped_column(
        ForeignKey("partners.id"),
        nullable=False,
        index=True,
    )
    rule_id: Mapped[int] = mapped_column(
        ForeignKey("commission_rules.id"),
        nullable=False,
        index=True,
    )

    status: Mapped[CommissionStatus] = mapped_column(
        SQLAlchemyEnum(
            CommissionStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )

    # Calculation inputs of record
    sale_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    performance_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)

    # Calculation and payout state
    calculation: Mapped[dict] = mapped_column(JSON, nullable=False)
    payment_schedule: Mapped[dict] = mapped_column(JSON, nullable=False)
    payment_details: Mapped[dict] = mapped_column(JSON, nullable=False)
    tax_details: Mapped[dict] = mapped_column(JSON, nullable=False)
    approval_workflow: Mapped[dict] = mapped_column(JSON, nullable=False)
    clawback_details: Mapped[dict] = mapped_column(JSON, nullable=False)
    adjustments: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Mirrored amounts
    net_commission: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
    )
    total_paid: Mapped[Decimal] = mapped_column(
        Money,
        default=Decimal("0"),
        nullable=False,
    )
    total_pending: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
    )

    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    last_modified_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("sale_id", "partner_id", name="uq_commission_sale_partner"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<PartnerCommission(id={self.id}, sale_id={self.sale_id}, "
            f"partner_id={self.partner_id}, status={self.status})>"
        )
