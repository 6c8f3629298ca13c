"""Tenant-scoped flag evaluation endpoints (public read path).

These handlers never fail because of the flag store: evaluation degrades to
``false`` for every flag it cannot read.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path

from tenantflags.dependencies import get_evaluation_dep
from tenantflags.evaluation.service import EvaluationService
from tenantflags.schemas import FlagEnabledResponse, TenantFlagsResponse

router = APIRouter(prefix="/flags", tags=["evaluation"])


@router.get("/{tenant_id}", response_model=TenantFlagsResponse)
async def tenant_flags(
    tenant_id: str = Path(..., min_length=1, max_length=128),
    evaluation: EvaluationService = Depends(get_evaluation_dep),
) -> TenantFlagsResponse:
    return TenantFlagsResponse(flags=await evaluation.flags_for_tenant(tenant_id))


@router.get("/{tenant_id}/{flag_key}", response_model=FlagEnabledResponse)
async def tenant_flag(
    tenant_id: str = Path(..., min_length=1, max_length=128),
    flag_key: str = Path(..., min_length=1, max_length=100),
    evaluation: EvaluationService = Depends(get_evaluation_dep),
) -> FlagEnabledResponse:
    return FlagEnabledResponse(enabled=await evaluation.is_enabled(tenant_id, flag_key))
