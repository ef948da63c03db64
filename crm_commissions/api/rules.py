"""Commission rule API endpoints."""

from fastapi import APIRouter, Depends, status

from crm_commissions.api.dependencies import get_rule_registry
from crm_commissions.schemas.requests import (
    RuleCreateRequest,
    RuleDeactivateRequest,
    RuleSaveResponse,
)
from crm_commissions.schemas.rule import RuleDefinition, RuleValidationResult
from crm_commissions.services import RuleRegistry, validate_rule

router = APIRouter(prefix="/rules", tags=["Commission rules"])


@router.post("", response_model=RuleSaveResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    data: RuleCreateRequest,
    registry: RuleRegistry = Depends(get_rule_registry),
):
    """Validate and store a commission rule. Warnings do not block saving."""
    saved, warnings = await registry.create_rule(data.rule, data.actor_id)
    return RuleSaveResponse(id=saved.id, warnings=warnings)


@router.post("/validate", response_model=RuleValidationResult)
async def validate_rule_draft(rule: RuleDefinition):
    """Check a rule without saving it."""
    return validate_rule(rule)


@router.get("/{rule_id}", response_model=RuleDefinition)
async def get_rule(
    rule_id: int,
    registry: RuleRegistry = Depends(get_rule_registry),
):
    return await registry.get_rule(rule_id)


@router.put("/{rule_id}", response_model=RuleSaveResponse)
async def update_rule(
    rule_id: int,
    rule: RuleDefinition,
    registry: RuleRegistry = Depends(get_rule_registry),
):
    """Replace a rule's configuration. Rules already used by a commission are read-only."""
    saved, warnings = await registry.update_rule(rule_id, rule)
    return RuleSaveResponse(id=saved.id, warnings=warnings)


@router.post("/{rule_id}/deactivate", response_model=RuleDefinition)
async def deactivate_rule(
    rule_id: int,
    data: RuleDeactivateRequest,
    registry: RuleRegistry = Depends(get_rule_registry),
):
    """Retire a rule. Commissions already created under it are unaffected."""
    return await registry.deactivate_rule(rule_id, data.actor_id, data.reason)
