"""Commission lifecycle API endpoints."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from crm_commissions.api.dependencies import (
    get_bulk_processor,
    get_commission_service,
    get_recalculation_engine,
)
from crm_commissions.schemas.commission import (
    BulkResult,
    CommissionAggregate,
    RecalculationResult,
    SaleChangeAdjustment,
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
    SaleChangeRequest,
)
from crm_commissions.services import (
    BulkPaymentData,
    BulkProcessor,
    CommissionService,
    RecalculationEngine,
)

router = APIRouter(prefix="/commissions", tags=["Commissions"])


@router.post("", response_model=CommissionAggregate, status_code=status.HTTP_201_CREATED)
async def create_commission(
    data: CreateCommissionRequest,
    service: CommissionService = Depends(get_commission_service),
):
    """Calculate and create the commission for a sale and partner."""
    return await service.create_commission(
        data.sale_id,
        data.partner_id,
        data.rule_id,
        data.actor_id,
    )


@router.get("/overdue", response_model=list[CommissionAggregate])
async def list_overdue_commissions(
    organization_id: int = Query(...),
    as_of: Optional[date] = Query(None, description="Defaults to today"),
    service: CommissionService = Depends(get_commission_service),
):
    """Payable commissions with an installment past its due date."""
    return await service.list_overdue_commissions(organization_id, as_of)


@router.post("/bulk/approve", response_model=BulkResult)
async def bulk_approve(
    data: BulkApproveRequest,
    processor: BulkProcessor = Depends(get_bulk_processor),
):
    """
    Approve many commissions.

    Each item succeeds or fails on its own; the response lists both.
    """
    return await processor.bulk_approve(data.commission_ids, data.actor_id, data.notes)


@router.post("/bulk/payments", response_model=BulkResult)
async def bulk_record_payments(
    data: BulkPaymentRequest,
    processor: BulkProcessor = Depends(get_bulk_processor),
):
    payment = BulkPaymentData(
        method=data.method,
        reference=data.reference,
        payment_date=data.payment_date,
        amounts=data.amounts,
    )
    return await processor.bulk_record_payments(data.commission_ids, payment, data.actor_id)


@router.post("/sales/{sale_id}/recalculate", response_model=list[SaleChangeAdjustment])
async def recalculate_for_sale_change(
    sale_id: int,
    data: SaleChangeRequest,
    engine: RecalculationEngine = Depends(get_recalculation_engine),
):
    """Re-derive the commissions of an edited sale."""
    return await engine.recalculate_for_sale_change(
        sale_id,
        data.changes.model_dump(exclude_none=True),
        data.actor_id,
    )


@router.get("/{commission_id}", response_model=CommissionAggregate)
async def get_commission(
    commission_id: int,
    service: CommissionService = Depends(get_commission_service),
):
    return await service.get_commission(commission_id)


@router.post("/{commission_id}/approve", response_model=CommissionAggregate)
async def approve_commission(
    commission_id: int,
    data: ApproveRequest,
    service: CommissionService = Depends(get_commission_service),
):
    return await service.approve_commission(commission_id, data.actor_id, data.notes)


@router.post("/{commission_id}/reject", response_model=CommissionAggregate)
async def reject_commission(
    commission_id: int,
    data: RejectRequest,
    service: CommissionService = Depends(get_commission_service),
):
    return await service.reject_commission(commission_id, data.actor_id, data.reason)


@router.post("/{commission_id}/payments", response_model=CommissionAggregate)
async def record_payment(
    commission_id: int,
    data: PaymentRequest,
    service: CommissionService = Depends(get_commission_service),
):
    """Record a payout. Omitting the amount pays the full pending balance."""
    return await service.record_payment(
        commission_id,
        data.amount,
        data.method,
        data.reference,
        data.payment_date,
        data.actor_id,
    )


@router.post("/{commission_id}/hold", response_model=CommissionAggregate)
async def put_commission_on_hold(
    commission_id: int,
    data: HoldRequest,
    service: CommissionService = Depends(get_commission_service),
):
    """Block payouts for the given number of days; the status is unchanged."""
    return await service.put_on_hold(
        commission_id,
        data.actor_id,
        data.reason,
        data.hold_days,
    )


@router.post("/{commission_id}/release-hold", response_model=CommissionAggregate)
async def release_commission_hold(
    commission_id: int,
    data: ReleaseHoldRequest,
    service: CommissionService = Depends(get_commission_service),
):
    return await service.release_hold(commission_id, data.actor_id, data.reason)


@router.post("/{commission_id}/clawback", response_model=CommissionAggregate)
async def clawback_commission(
    commission_id: int,
    data: ClawbackRequest,
    service: CommissionService = Depends(get_commission_service),
):
    return await service.clawback_commission(
        commission_id,
        data.reason,
        data.actor_id,
        data.amount,
    )


@router.post("/{commission_id}/recalculate", response_model=RecalculationResult)
async def recalculate_commission(
    commission_id: int,
    data: RecalculateRequest,
    engine: RecalculationEngine = Depends(get_recalculation_engine),
):
    """Refresh a commission against the partner's current performance."""
    return await engine.recalculate_single(commission_id, data.actor_id)
