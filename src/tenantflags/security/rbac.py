"""Role-Based Access Control (RBAC) for the admin surface."""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


class Role(enum.StrEnum):
    SUPER_ADMIN = "super_admin"
    ENGINEER = "engineer"
    SUPPORT_LEAD = "support_lead"
    SUPPORT = "support"


class Permission(enum.StrEnum):
    FLAGS_READ = "flags:read"
    FLAGS_WRITE = "flags:write"
    VIEW_METRICS = "view:metrics"


_ROLE_PERMISSIONS: dict[Role, set[Permission]] = {
    Role.SUPER_ADMIN: set(Permission),
    Role.ENGINEER: set(Permission),
    Role.SUPPORT_LEAD: {Permission.FLAGS_READ, Permission.VIEW_METRICS},
    Role.SUPPORT: {Permission.FLAGS_READ},
}


def hash_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode()).hexdigest()


@dataclass
class APIKeyRecord:
    key_hash: str
    actor: str
    role: Role
    description: str = ""
    active: bool = True


class RBACRegistry:
    """In-memory RBAC registry for API key -> role -> permissions resolution."""

    def __init__(self) -> None:
        self._keys: dict[str, APIKeyRecord] = {}

    def register_key(
        self,
        key_hash: str,
        actor: str,
        role: Role,
        description: str = "",
    ) -> APIKeyRecord:
        record = APIKeyRecord(key_hash=key_hash, actor=actor, role=role, description=description)
        self._keys[key_hash] = record
        logger.info("api_key_registered", actor=actor, role=role.value)
        return record

    def resolve(self, key_hash: str) -> APIKeyRecord | None:
        record = self._keys.get(key_hash)
        if record is None or not record.active:
            return None
        return record

    def has_permission(self, key_hash: str, permission: Permission) -> bool:
        record = self.resolve(key_hash)
        if record is None:
            return False
        return permission in self.get_permissions(record.role)

    @staticmethod
    def get_permissions(role: Role) -> set[Permission]:
        return _ROLE_PERMISSIONS.get(role, set())

    def deactivate_key(self, key_hash: str) -> bool:
        record = self._keys.get(key_hash)
        if record is None:
            return False
        record.active = False
        logger.info("api_key_deactivated", actor=record.actor)
        return True

    def list_keys(self, role: Role | None = None) -> list[APIKeyRecord]:
        keys = list(self._keys.values())
        if role is not None:
            keys = [k for k in keys if k.role is role]
        return keys
