"""
Database models for the commission engine.

All models are exported here for convenient imports:
    from crm_commissions.models import PartnerCommission, CommissionRule, etc.
"""

from crm_commissions.models.base import Base, TimestampMixin
from crm_commissions.models.commission import (
    PAYABLE_STATUSES,
    TERMINAL_STATUSES,
    AdjustmentType,
    ApprovalStatus,
    CommissionStatus,
    InstallmentStatus,
    PartnerCommission,
    PaymentMethod,
)
from crm_commissions.models.rule import (
    BonusType,
    CalculationBasis,
    CalculationMethod,
    CommissionRule,
    DeductionType,
    GstTreatment,
    PaymentScheduleType,
)
from crm_commissions.models.sale import Partner, Sale

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Rule
    "CommissionRule",
    "CalculationMethod",
    "CalculationBasis",
    "PaymentScheduleType",
    "GstTreatment",
    "BonusType",
    "DeductionType",
    # Commission
    "PartnerCommission",
    "CommissionStatus",
    "InstallmentStatus",
    "ApprovalStatus",
    "AdjustmentType",
    "PaymentMethod",
    "TERMINAL_STATUSES",
    "PAYABLE_STATUSES",
    # Sales
    "Sale",
    "Partner",
]
