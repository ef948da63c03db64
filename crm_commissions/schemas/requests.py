"""
Request bodies accepted by the HTTP adapter.

There is no authentication layer: the acting user travels as
``actor_id`` in the body.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from crm_commissions.models.commission import PaymentMethod
from crm_commissions.schemas.rule import RuleDefinition


class CreateCommissionRequest(BaseModel):
    sale_id: int
    partner_id: int
    rule_id: int
    actor_id: int


class ApproveRequest(BaseModel):
    actor_id: int
    notes: Optional[str] = Field(None, max_length=2000)


class RejectRequest(BaseModel):
    actor_id: int
    reason: str = Field(..., max_length=2000)


class PaymentRequest(BaseModel):
    actor_id: int
    amount: Optional[Decimal] = Field(
        None,
        description="Omit to pay the full pending balance",
    )
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    reference: Optional[str] = Field(None, max_length=200)
    payment_date: date


class ClawbackRequest(BaseModel):
    actor_id: int
    reason: str = Field(..., max_length=2000)
    amount: Optional[Decimal] = Field(
        None,
        description="Omit to reclaim everything paid so far",
    )


class HoldRequest(BaseModel):
    actor_id: int
    reason: str = Field(..., max_length=2000)
    hold_days: int = Field(..., ge=1, le=3650)


class ReleaseHoldRequest(BaseModel):
    actor_id: int
    reason: Optional[str] = Field(None, max_length=2000)


class RecalculateRequest(BaseModel):
    actor_id: int


class SaleChanges(BaseModel):
    """Sale fields that trigger recalculation; unset fields are unchanged."""

    sale_price: Optional[Decimal] = Field(None, ge=0)
    base_price: Optional[Decimal] = Field(None, ge=0)
    unit_type: Optional[str] = Field(None, max_length=30)


class SaleChangeRequest(BaseModel):
    actor_id: int
    changes: SaleChanges


class BulkApproveRequest(BaseModel):
    actor_id: int
    commission_ids: list[int] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=2000)


class BulkPaymentRequest(BaseModel):
    actor_id: int
    commission_ids: list[int] = Field(..., min_length=1)
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    reference: Optional[str] = Field(None, max_length=200)
    payment_date: date
    amounts: dict[int, Decimal] = Field(default_factory=dict)


class RuleCreateRequest(BaseModel):
    actor_id: int
    rule: RuleDefinition


class RuleDeactivateRequest(BaseModel):
    actor_id: int
    reason: Optional[str] = Field(None, max_length=2000)


class RuleSaveResponse(BaseModel):
    """Saved rule id plus the non-blocking validation warnings."""

    id: int
    warnings: list[str] = Field(default_factory=list)
