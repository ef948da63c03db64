"""
CommissionRule model: versioned commission calculation structures.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from crm_commissions.models.base import Base, Money, Rate, TimestampMixin


class CalculationMethod(str, Enum):
    """How the gross commission is derived from a sale."""
    FLAT = "flat"                    # Single base rate on every sale
    TIERED = "tiered"                # Rate chosen by partner sales volume band
    PER_UNIT_TYPE = "per_unit_type"  # Rate looked up by unit type


class CalculationBasis(str, Enum):
    """Sale amount the commission rate is applied to."""
    SALE_PRICE = "sale_price"
    BASE_PRICE = "base_price"


class PaymentScheduleType(str, Enum):
    """Installment policy for payouts."""
    IMMEDIATE = "immediate"
    MONTHLY = "monthly"


class GstTreatment(str, Enum):
    """Whether GST is withheld from the payout or added on top of it."""
    WITHHELD = "withheld"
    ADDED = "added"


class BonusType(str, Enum):
    """Condition a performance bonus is evaluated against."""
    SALES_TARGET = "sales_target"
    UNIT_COUNT = "unit_count"
    CUSTOMER_RATING = "customer_rating"
    TIME_BASED = "time_based"


class DeductionType(str, Enum):
    """Kinds of deduction lines on a commission."""
    TDS = "tds"
    GST = "gst"
    SERVICE_CHARGE = "service_charge"
    PROCESSING_FEE = "processing_fee"
    PENALTY = "penalty"
    OTHER = "other"


class CommissionRule(Base, TimestampMixin):
    """
    Commission structure applied to partner sales.

    Nested configuration (tiers, unit-type rates, bonuses, deductions,
    tax, payment terms, approval and clawback policy) is stored as JSON
    and validated through ``RuleDefinition`` before it is saved.

    A rule becomes read-only once a commission references it.
    """

    __tablename__ = "commission_rules"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    project_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="NULL means the rule applies to all projects",
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # Calculation
    calculation_method: Mapped[CalculationMethod] = mapped_column(
        SQLAlchemyEnum(
            CalculationMethod,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )
    calculation_basis: Mapped[CalculationBasis] = mapped_column(
        SQLAlchemyEnum(
            CalculationBasis,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=CalculationBasis.SALE_PRICE,
        nullable=False,
    )
    base_rate: Mapped[Decimal] = mapped_column(
        Rate,
        default=Decimal("0"),
        nullable=False,
        comment="Percentage rate for the flat method",
    )
    tiers: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    unit_type_rates: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    bonus_rules: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    deduction_rules: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    tax_settings: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    payment_terms: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    approval_policy: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    clawback_policy: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    # Validity window [valid_from, valid_until)
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
    )

    # Usage statistics (only ever incremented)
    total_partners_using: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    total_commission_paid: Mapped[Decimal] = mapped_column(
        Money,
        default=Decimal("0"),
        nullable=False,
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<CommissionRule(id={self.id}, name='{self.name}', method={self.calculation_method})>"
