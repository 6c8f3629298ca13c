"""Pydantic v2 schemas for the tenantflags service.

Domain records (flags, overrides, history entries), evaluation results and the
API request/response models. Everything serializes to camelCase on the wire
and accepts either camelCase or snake_case on input.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class FlagStatus(StrEnum):
    ACTIVE = "active"
    ROLLOUT = "rollout"
    KILLED = "killed"
    ARCHIVED = "archived"


class FlagCategory(StrEnum):
    CORE = "core"
    BETA = "beta"
    EXPERIMENT = "experiment"
    TIER_GATE = "tier_gate"
    KILL_SWITCH = "kill_switch"
    OPS = "ops"


class ChangeType(StrEnum):
    CREATED = "created"
    TOGGLED = "toggled"
    ROLLOUT_CHANGED = "rollout_changed"
    OVERRIDE_ADDED = "override_added"
    OVERRIDE_REMOVED = "override_removed"
    KILLED = "killed"
    REVIVED = "revived"
    ARCHIVED = "archived"
    UPDATED = "updated"


class EvaluationReason(StrEnum):
    NOT_FOUND = "not_found"
    ARCHIVED = "archived"
    KILLED = "killed"
    OVERRIDE = "override"
    DISABLED = "disabled"
    FULL_ROLLOUT = "full_rollout"
    NO_ROLLOUT = "no_rollout"
    ROLLOUT = "rollout"
    STORE_ERROR = "store_error"


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------


class FeatureFlag(FrozenCamelModel):
    id: str = Field(default_factory=_uuid)
    key: str
    name: str
    description: str = ""
    category: FlagCategory = FlagCategory.CORE
    is_enabled: bool = False
    rollout_percentage: int = Field(default=0, ge=0, le=100)
    status: FlagStatus = FlagStatus.ACTIVE
    version: int = 1
    kill_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    archived_at: datetime | None = None

    def state(self, *fields: str) -> dict[str, Any]:
        """JSON snapshot of the given fields (all fields when none are named)."""
        include = set(fields) if fields else None
        return self.model_dump(mode="json", by_alias=True, include=include)


class FeatureFlagOverride(FrozenCamelModel):
    flag_id: str
    tenant_id: str
    is_enabled: bool
    reason: str | None = None
    created_by: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def state(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json", by_alias=True, include={"tenant_id", "is_enabled", "reason"}
        )


class FeatureFlagHistoryEntry(FrozenCamelModel):
    id: str = Field(default_factory=_uuid)
    flag_id: str
    change_type: ChangeType
    actor: str
    before_state: dict[str, Any] | None = None
    after_state: dict[str, Any] | None = None
    reason: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class EvaluationResult(FrozenCamelModel):
    enabled: bool
    reason: EvaluationReason


# ---------------------------------------------------------------------------
# API request / response models
# ---------------------------------------------------------------------------


class CreateFlagRequest(CamelModel):
    key: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=4096)
    category: FlagCategory = FlagCategory.CORE
    is_enabled: bool = False
    rollout_percentage: int = 0


class UpdateFlagRequest(CamelModel):
    is_enabled: bool | None = None
    rollout_percentage: int | None = None
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=4096)
    category: FlagCategory | None = None
    version: int | None = Field(default=None, description="Expected version for compare-and-swap")


class KillRequest(CamelModel):
    reason: str | None = Field(default=None, max_length=1024)


class SetOverrideRequest(CamelModel):
    is_enabled: bool
    reason: str | None = Field(default=None, max_length=1024)


class OverrideView(CamelModel):
    flag_id: str
    tenant_id: str
    tenant_name: str | None = None
    is_enabled: bool
    reason: str | None = None
    created_by: str = ""
    created_at: datetime
    updated_at: datetime


class FlagSummary(FeatureFlag):
    override_count: int = 0


class FlagDetail(FeatureFlag):
    overrides: list[OverrideView] = Field(default_factory=list)


class TenantFlagsResponse(CamelModel):
    flags: dict[str, bool] = Field(default_factory=dict)


class FlagEnabledResponse(CamelModel):
    enabled: bool


class EvaluationDiagnostic(CamelModel):
    flag_key: str
    tenant_id: str
    enabled: bool
    reason: EvaluationReason
    bucket: int


class PaginationMeta(CamelModel):
    page: int = 1
    per_page: int = 20
    total: int = 0
    total_pages: int = 0


class FlagPage(CamelModel):
    data: list[FlagSummary] = Field(default_factory=list)
    meta: PaginationMeta = Field(default_factory=PaginationMeta)


class OverridePage(CamelModel):
    data: list[OverrideView] = Field(default_factory=list)
    meta: PaginationMeta = Field(default_factory=PaginationMeta)


class HistoryPage(CamelModel):
    data: list[FeatureFlagHistoryEntry] = Field(default_factory=list)
    meta: PaginationMeta = Field(default_factory=PaginationMeta)


class HealthResponse(CamelModel):
    status: str = "ok"
    version: str = "0.1.0"
    services: dict[str, str] = Field(default_factory=dict)
    cache: dict[str, Any] = Field(default_factory=dict)


def page_meta(total: int, page: int, per_page: int) -> PaginationMeta:
    return PaginationMeta(
        page=page,
        per_page=per_page,
        total=total,
        total_pages=max(1, (total + per_page - 1) // per_page),
    )
