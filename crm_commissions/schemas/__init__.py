"""Pydantic schemas for the commission engine and its HTTP adapter."""

from crm_commissions.schemas.commission import (
    BulkItemFailure,
    BulkItemSuccess,
    BulkResult,
    CalculationBreakdown,
    CommissionAggregate,
    PartnerPerformance,
    RecalculationResult,
    SaleChangeAdjustment,
    SaleSnapshot,
)
from crm_commissions.schemas.requests import (
    ApproveRequest,
    BulkApproveRequest,
    BulkPaymentRequest,
    ClawbackRequest,
    CreateCommissionRequest,
    HoldRequest,
    PaymentRequest,
    RecalculateRequest,
    RejectRequest,
    ReleaseHoldRequest,
    RuleCreateRequest,
    RuleDeactivateRequest,
    RuleSaveResponse,
    SaleChangeRequest,
    SaleChanges,
)
from crm_commissions.schemas.rule import (
    RuleDefinition,
    RuleValidationResult,
    Tier,
)

__all__ = [
    # Commission
    "CommissionAggregate",
    "CalculationBreakdown",
    "SaleSnapshot",
    "PartnerPerformance",
    "BulkResult",
    "BulkItemSuccess",
    "BulkItemFailure",
    "SaleChangeAdjustment",
    "RecalculationResult",
    # Rule
    "RuleDefinition",
    "RuleValidationResult",
    "Tier",
    # Requests
    "CreateCommissionRequest",
    "ApproveRequest",
    "RejectRequest",
    "PaymentRequest",
    "ClawbackRequest",
    "HoldRequest",
    "ReleaseHoldRequest",
    "RecalculateRequest",
    "SaleChanges",
    "SaleChangeRequest",
    "BulkApproveRequest",
    "BulkPaymentRequest",
    "RuleCreateRequest",
    "RuleDeactivateRequest",
    "RuleSaveResponse",
]
