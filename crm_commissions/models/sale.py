"""
Sale and Partner models.

These tables belong to the sales subsystem. The commission engine only
reads them to build sale snapshots and partner performance.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_commissions.models.base import Base, Money, TimestampMixin


class Partner(Base, TimestampMixin):
    """Channel partner / broker who earns commissions."""

    __tablename__ = "partners"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    partner_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="channel_partner, broker, employee, referral, digital_partner",
    )
    average_rating: Mapped[Decimal] = mapped_column(
        Numeric(3, 2),
        default=Decimal("0"),
        nullable=False,
    )
    joined_on: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Partner(id={self.id}, name='{self.name}')>"


class Sale(Base, TimestampMixin):
    """Booked unit sale attributed to a partner."""

    __tablename__ = "sales"

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
    partner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("partners.id"),
        nullable=True,
        index=True,
    )
    sale_price: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
    )
    base_price: Mapped[Optional[Decimal]] = mapped_column(
        Money,
        nullable=True,
    )
    unit_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="1BHK, 2BHK, 3BHK, 4BHK, Villa, Plot, Commercial, Other",
    )
    booking_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
    )

    partner: Mapped[Optional["Partner"]] = relationship("Partner")

    def __repr__(self) -> str:
        return f"<Sale(id={self.id}, sale_price={self.sale_price}, unit_type='{self.unit_type}')>"
