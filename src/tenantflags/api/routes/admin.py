"""Privileged flag administration endpoints.

Handlers stay thin: validation and state rules live in the admin managers,
errors propagate to the structured exception handlers, and every successful
mutation is written to the audit log.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Path, Query, Request, status

from tenantflags.admin.flags import FlagManager
from tenantflags.admin.overrides import OverrideFilter, OverrideManager
from tenantflags.dependencies import (
    get_audit_dep,
    get_evaluation_dep,
    get_flag_manager_dep,
    get_override_manager_dep,
)
from tenantflags.evaluation.service import EvaluationService
from tenantflags.observability.audit import AuditLogger
from tenantflags.schemas import (
    CreateFlagRequest,
    EvaluationDiagnostic,
    FeatureFlag,
    FlagDetail,
    FlagPage,
    FlagStatus,
    HistoryPage,
    KillRequest,
    OverridePage,
    OverrideView,
    SetOverrideRequest,
    UpdateFlagRequest,
    page_meta,
)
from tenantflags.security.auth import require_permission
from tenantflags.security.rbac import Permission

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin/flags", tags=["admin"])

_can_read = require_permission(Permission.FLAGS_READ)
_can_write = require_permission(Permission.FLAGS_WRITE)

_DETAIL_OVERRIDE_LIMIT = 100


def _audit_action(
    audit: AuditLogger,
    request: Request,
    action: str,
    actor: str,
    flag_id: str,
    details: dict[str, Any] | None = None,
    status_code: int = 200,
) -> None:
    audit.log_admin_action(
        action,
        actor,
        flag_id,
        client_ip=request.client.host if request.client else "",
        request_id=getattr(request.state, "request_id", ""),
        status=status_code,
        details=details,
    )


@router.get("", response_model=FlagPage)
async def list_flags(
    status_filter: FlagStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100, alias="perPage"),
    _actor: str = Depends(_can_read),
    flags: FlagManager = Depends(get_flag_manager_dep),
) -> FlagPage:
    data, total = await flags.list_flags(status=status_filter, page=page, per_page=per_page)
    return FlagPage(data=data, meta=page_meta(total, page, per_page))


@router.post("", response_model=FeatureFlag, status_code=status.HTTP_201_CREATED)
async def create_flag(
    body: CreateFlagRequest,
    request: Request,
    actor: str = Depends(_can_write),
    flags: FlagManager = Depends(get_flag_manager_dep),
    audit: AuditLogger = Depends(get_audit_dep),
) -> FeatureFlag:
    flag = await flags.create_flag(
        body.key,
        body.name,
        actor,
        description=body.description,
        category=body.category,
        is_enabled=body.is_enabled,
        rollout_percentage=body.rollout_percentage,
    )
    _audit_action(audit, request, "create_flag", actor, flag.id, {"key": flag.key}, 201)
    return flag


@router.get("/{flag_id}", response_model=FlagDetail)
async def get_flag(
    flag_id: str = Path(...),
    _actor: str = Depends(_can_read),
    flags: FlagManager = Depends(get_flag_manager_dep),
    overrides: OverrideManager = Depends(get_override_manager_dep),
) -> FlagDetail:
    flag = await flags.get_flag(flag_id)
    views, _ = await overrides.list_overrides(flag_id, per_page=_DETAIL_OVERRIDE_LIMIT)
    return FlagDetail(**flag.model_dump(), overrides=views)


@router.put("/{flag_id}", response_model=FeatureFlag)
async def update_flag(
    body: UpdateFlagRequest,
    request: Request,
    flag_id: str = Path(...),
    actor: str = Depends(_can_write),
    flags: FlagManager = Depends(get_flag_manager_dep),
    audit: AuditLogger = Depends(get_audit_dep),
) -> FeatureFlag:
    flag = await flags.update_flag(
        flag_id,
        actor,
        is_enabled=body.is_enabled,
        rollout_percentage=body.rollout_percentage,
        name=body.name,
        description=body.description,
        category=body.category,
        expected_version=body.version,
    )
    _audit_action(
        audit,
        request,
        "update_flag",
        actor,
        flag_id,
        body.model_dump(mode="json", exclude_none=True, by_alias=True),
    )
    return flag


@router.post("/{flag_id}/kill", response_model=FeatureFlag)
async def kill_flag(
    request: Request,
    body: KillRequest | None = None,
    flag_id: str = Path(...),
    actor: str = Depends(_can_write),
    flags: FlagManager = Depends(get_flag_manager_dep),
    audit: AuditLogger = Depends(get_audit_dep),
) -> FeatureFlag:
    reason = body.reason if body is not None else None
    flag = await flags.kill(flag_id, actor, reason)
    _audit_action(audit, request, "kill_flag", actor, flag_id, {"reason": reason})
    return flag


@router.post("/{flag_id}/revive", response_model=FeatureFlag)
async def revive_flag(
    request: Request,
    flag_id: str = Path(...),
    actor: str = Depends(_can_write),
    flags: FlagManager = Depends(get_flag_manager_dep),
    audit: AuditLogger = Depends(get_audit_dep),
) -> FeatureFlag:
    flag = await flags.revive(flag_id, actor)
    _audit_action(audit, request, "revive_flag", actor, flag_id)
    return flag


@router.post("/{flag_id}/archive", response_model=FeatureFlag)
async def archive_flag(
    request: Request,
    flag_id: str = Path(...),
    actor: str = Depends(_can_write),
    flags: FlagManager = Depends(get_flag_manager_dep),
    audit: AuditLogger = Depends(get_audit_dep),
) -> FeatureFlag:
    flag = await flags.archive(flag_id, actor)
    _audit_action(audit, request, "archive_flag", actor, flag_id)
    return flag


@router.get("/{flag_id}/overrides", response_model=OverridePage)
async def list_overrides(
    flag_id: str = Path(...),
    enabled: bool | None = Query(default=None),
    tenant: str | None = Query(default=None, max_length=128, description="Tenant id substring"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100, alias="perPage"),
    _actor: str = Depends(_can_read),
    overrides: OverrideManager = Depends(get_override_manager_dep),
) -> OverridePage:
    views, total = await overrides.list_overrides(
        flag_id,
        OverrideFilter(enabled=enabled, tenant_query=tenant),
        page=page,
        per_page=per_page,
    )
    return OverridePage(data=views, meta=page_meta(total, page, per_page))


@router.post("/{flag_id}/overrides/{tenant_id}", response_model=OverrideView)
async def set_override(
    body: SetOverrideRequest,
    request: Request,
    flag_id: str = Path(...),
    tenant_id: str = Path(..., min_length=1, max_length=128),
    actor: str = Depends(_can_write),
    overrides: OverrideManager = Depends(get_override_manager_dep),
    audit: AuditLogger = Depends(get_audit_dep),
) -> OverrideView:
    stored = await overrides.set_override(
        flag_id, tenant_id, body.is_enabled, actor, reason=body.reason
    )
    _audit_action(
        audit,
        request,
        "set_override",
        actor,
        flag_id,
        {"tenantId": tenant_id, "isEnabled": body.is_enabled},
    )
    return OverrideView(**stored.model_dump())


@router.delete("/{flag_id}/overrides/{tenant_id}")
async def remove_override(
    request: Request,
    flag_id: str = Path(...),
    tenant_id: str = Path(..., min_length=1, max_length=128),
    actor: str = Depends(_can_write),
    overrides: OverrideManager = Depends(get_override_manager_dep),
    audit: AuditLogger = Depends(get_audit_dep),
) -> dict[str, bool]:
    removed = await overrides.remove_override(flag_id, tenant_id, actor)
    _audit_action(
        audit,
        request,
        "remove_override",
        actor,
        flag_id,
        {"tenantId": tenant_id, "removed": removed},
    )
    return {"removed": removed}


@router.get("/{flag_id}/history", response_model=HistoryPage)
async def flag_history(
    flag_id: str = Path(...),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100, alias="perPage"),
    _actor: str = Depends(_can_read),
    flags: FlagManager = Depends(get_flag_manager_dep),
) -> HistoryPage:
    entries, total = await flags.history(flag_id, page=page, per_page=per_page)
    return HistoryPage(data=entries, meta=page_meta(total, page, per_page))


@router.get("/{flag_id}/evaluate/{tenant_id}", response_model=EvaluationDiagnostic)
async def diagnose_evaluation(
    flag_id: str = Path(...),
    tenant_id: str = Path(..., min_length=1, max_length=128),
    _actor: str = Depends(_can_read),
    flags: FlagManager = Depends(get_flag_manager_dep),
    evaluation: EvaluationService = Depends(get_evaluation_dep),
) -> EvaluationDiagnostic:
    flag = await flags.get_flag(flag_id)
    return await evaluation.diagnose(tenant_id, flag.key)
