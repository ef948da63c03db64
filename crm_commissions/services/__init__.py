"""Business logic services."""

from crm_commissions.services.bulk import BulkPaymentData, BulkProcessor
from crm_commissions.services.calculator import calculate_commission
from crm_commissions.services.commission_service import CommissionService
from crm_commissions.services.payment_schedule import build_payment_schedule
from crm_commissions.services.recalculation import RecalculationEngine
from crm_commissions.services.rule_registry import RuleRegistry, validate_rule

__all__ = [
    "BulkPaymentData",
    "BulkProcessor",
    "CommissionService",
    "RecalculationEngine",
    "RuleRegistry",
    "build_payment_schedule",
    "calculate_commission",
    "validate_rule",
]
