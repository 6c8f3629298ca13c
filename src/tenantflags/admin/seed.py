"""Load flag definitions from a YAML seed into an empty store."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from tenantflags.admin.flags import FlagManager
from tenantflags.admin.overrides import OverrideManager
from tenantflags.schemas import FlagCategory
from tenantflags.store.base import FlagStore

logger = structlog.get_logger(__name__)


def read_seed(path: Path) -> list[dict[str, Any]]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    flags = data.get("flags", [])
    if not isinstance(flags, list):
        raise ValueError(f"Seed file {path} must contain a 'flags' list")
    return flags


async def load_seed(
    path: Path,
    store: FlagStore,
    flags: FlagManager,
    overrides: OverrideManager,
    actor: str,
) -> int:
    """Create each seeded flag (and its overrides) through the admin managers.

    Skipped entirely when the store already holds flags. Returns the number
    of flags created.
    """
    if await store.list_flags():
        logger.info("seed_skipped_store_not_empty", path=str(path))
        return 0

    created = 0
    for entry in read_seed(path):
        flag = await flags.create_flag(
            entry["key"],
            entry.get("name", entry["key"]),
            actor,
            description=entry.get("description", ""),
            category=FlagCategory(entry.get("category", FlagCategory.CORE)),
            is_enabled=bool(entry.get("is_enabled", False)),
            rollout_percentage=int(entry.get("rollout_percentage", 0)),
        )
        for row in entry.get("overrides", []):
            await overrides.set_override(
                flag.id,
                str(row["tenant_id"]),
                bool(row["is_enabled"]),
                actor,
                reason=row.get("reason"),
            )
        created += 1

    logger.info("seed_loaded", path=str(path), flags=created)
    return created
