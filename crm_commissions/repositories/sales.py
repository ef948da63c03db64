"""
Read-side access to sales and partners.

The sales subsystem owns these tables. The engine reads them to build
sale snapshots and partner performance; it never writes to them.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_commissions.errors import NotFound
from crm_commissions.models import Partner, Sale
from crm_commissions.schemas.commission import PartnerPerformance, SaleSnapshot
from crm_commissions.utils.money import months_between


def sale_snapshot(sale: Sale) -> SaleSnapshot:
    """Calculation inputs of a sale. A missing base price falls back to the sale price."""
    return SaleSnapshot(
        sale_price=sale.sale_price,
        base_price=sale.base_price if sale.base_price is not None else sale.sale_price,
        unit_type=sale.unit_type,
        sale_date=sale.booking_date,
    )


class SalesRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_sale(self, sale_id: int) -> Sale:
        sale = await self.session.get(Sale, sale_id)
        if sale is None:
            raise NotFound("Sale", sale_id)
        return sale

    async def get_partner(self, partner_id: int) -> Partner:
        partner = await self.session.get(Partner, partner_id)
        if partner is None:
            raise NotFound("Partner", partner_id)
        return partner

    async def partner_performance(
        self,
        partner: Partner,
        as_of: date,
        exclude_sale_id: Optional[int] = None,
    ) -> PartnerPerformance:
        """
        Aggregate a partner's sales history.

        The sale being commissioned is excluded; the calculator adds it to
        the volume itself when it picks a tier.
        """
        conditions = [
            Sale.partner_id == partner.id,
            Sale.organization_id == partner.organization_id,
        ]
        if exclude_sale_id is not None:
            conditions.append(Sale.id != exclude_sale_id)

        result = await self.session.execute(
            select(
                func.coalesce(func.sum(Sale.sale_price), 0),
                func.count(Sale.id),
                func.max(Sale.booking_date),
            ).where(*conditions)
        )
        volume, units, last_sale_date = result.one()

        return PartnerPerformance(
            total_sales_volume=Decimal(str(volume)),
            total_units_sold=units,
            average_rating=partner.average_rating or Decimal("0"),
            months_with_company=(
                months_between(partner.joined_on, as_of) if partner.joined_on else 0
            ),
            last_sale_date=last_sale_date,
        )
