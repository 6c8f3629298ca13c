"""Flag status state machine.

::

    active <-> rollout
    active | rollout  -> killed -> active   (revive)
    any non-archived  -> archived           (terminal)

Transitions are pure: they take a flag and return the would-be next state
without persisting anything. Rejected transitions raise
``InvalidTransitionError`` and leave the input untouched.
"""

from __future__ import annotations

import re
from typing import assert_never

from tenantflags.errors import InvalidTransitionError, ValidationError
from tenantflags.schemas import FeatureFlag, FlagCategory, FlagStatus, utcnow

KEY_PATTERN = re.compile(r"[a-z0-9][a-z0-9_.-]{0,99}")


def validate_key(key: str) -> str:
    if not KEY_PATTERN.fullmatch(key):
        raise ValidationError(
            "Flag key must be a lowercase slug (a-z, 0-9, '_', '-', '.'), at most 100 characters",
            details={"key": key},
        )
    return key


def validate_rollout(percentage: int) -> int:
    if isinstance(percentage, bool) or not isinstance(percentage, int):
        raise ValidationError("rolloutPercentage must be an integer", details={"value": percentage})
    if not 0 <= percentage <= 100:
        raise ValidationError(
            "rolloutPercentage must be between 0 and 100", details={"value": percentage}
        )
    return percentage


def status_for_rollout(percentage: int) -> FlagStatus:
    return FlagStatus.ROLLOUT if 0 < percentage < 100 else FlagStatus.ACTIVE


def new_flag(
    key: str,
    name: str,
    *,
    description: str = "",
    category: FlagCategory = FlagCategory.CORE,
    is_enabled: bool = False,
    rollout_percentage: int = 0,
) -> FeatureFlag:
    validate_key(key)
    validate_rollout(rollout_percentage)
    return FeatureFlag(
        key=key,
        name=name,
        description=description,
        category=category,
        is_enabled=is_enabled,
        rollout_percentage=rollout_percentage,
        status=status_for_rollout(rollout_percentage),
    )


def _reject(flag: FeatureFlag, action: str) -> InvalidTransitionError:
    return InvalidTransitionError(
        f"Cannot {action} a flag in status '{flag.status}'",
        details={"flag_id": flag.id, "status": flag.status.value, "action": action},
    )


def _require_not_archived(flag: FeatureFlag, action: str) -> None:
    match flag.status:
        case FlagStatus.ARCHIVED:
            raise _reject(flag, action)
        case FlagStatus.ACTIVE | FlagStatus.ROLLOUT | FlagStatus.KILLED:
            return
        case _:
            assert_never(flag.status)


def toggle(flag: FeatureFlag, enabled: bool) -> FeatureFlag:
    _require_not_archived(flag, "toggle")
    return flag.model_copy(update={"is_enabled": enabled})


def update_rollout(flag: FeatureFlag, percentage: int) -> FeatureFlag:
    validate_rollout(percentage)
    match flag.status:
        case FlagStatus.ARCHIVED | FlagStatus.KILLED:
            raise _reject(flag, "change the rollout of")
        case FlagStatus.ACTIVE | FlagStatus.ROLLOUT:
            return flag.model_copy(
                update={
                    "rollout_percentage": percentage,
                    "status": status_for_rollout(percentage),
                }
            )
        case _:
            assert_never(flag.status)


def kill(flag: FeatureFlag, reason: str | None = None) -> FeatureFlag:
    """Kill the flag. Killing an already killed flag returns it unchanged."""
    match flag.status:
        case FlagStatus.ARCHIVED:
            raise _reject(flag, "kill")
        case FlagStatus.KILLED:
            return flag
        case FlagStatus.ACTIVE | FlagStatus.ROLLOUT:
            return flag.model_copy(update={"status": FlagStatus.KILLED, "kill_reason": reason})
        case _:
            assert_never(flag.status)


def revive(flag: FeatureFlag) -> FeatureFlag:
    """Bring a killed flag back to ``active`` with rollout reset to 0."""
    match flag.status:
        case FlagStatus.KILLED:
            return flag.model_copy(
                update={
                    "status": FlagStatus.ACTIVE,
                    "rollout_percentage": 0,
                    "kill_reason": None,
                }
            )
        case FlagStatus.ACTIVE | FlagStatus.ROLLOUT | FlagStatus.ARCHIVED:
            raise _reject(flag, "revive")
        case _:
            assert_never(flag.status)


def archive(flag: FeatureFlag) -> FeatureFlag:
    _require_not_archived(flag, "archive")
    return flag.model_copy(update={"status": FlagStatus.ARCHIVED, "archived_at": utcnow()})


def update_details(
    flag: FeatureFlag,
    *,
    name: str | None = None,
    description: str | None = None,
    category: FlagCategory | None = None,
) -> FeatureFlag:
    _require_not_archived(flag, "edit")
    changes: dict[str, object] = {}
    if name is not None:
        changes["name"] = name
    if description is not None:
        changes["description"] = description
    if category is not None:
        changes["category"] = category
    return flag.model_copy(update=changes)
