"""Persistence layer: repositories and the unit of work that binds them."""

from crm_commissions.repositories.commissions import CommissionRepository
from crm_commissions.repositories.rules import RuleRepository
from crm_commissions.repositories.sales import SalesRepository, sale_snapshot
from crm_commissions.repositories.unit_of_work import UnitOfWork

__all__ = [
    "CommissionRepository",
    "RuleRepository",
    "SalesRepository",
    "UnitOfWork",
    "sale_snapshot",
]
