"""Permission tiers for CRM commands.

Three tiers, highest first: ``FULL`` (office/admin, may see invoices and costs),
``DATA_ONLY`` (team leads, all CRM data except financials) and ``OWN_TASKS``
(staff, only tasks assigned to them). Role ids come from config.
"""

from __future__ import annotations

import enum
from typing import Iterable, Optional

import discord
from discord import app_commands

from shared.config import get_admin_role_ids, get_staff_role_ids, get_team_lead_role_ids


class PermissionTier(enum.IntEnum):
    OWN_TASKS = 1
    DATA_ONLY = 2
    FULL = 3


class MissingTier(app_commands.CheckFailure):
    def __init__(self, required: PermissionTier) -> None:
        super().__init__(f"requires {required.name.lower()} access")
        self.required = required


def _role_ids(member: object) -> set[int]:
    roles: Iterable[object] = getattr(member, "roles", None) or ()
    ids: set[int] = set()
    for role in roles:
        role_id = getattr(role, "id", None)
        if isinstance(role_id, int):
            ids.add(role_id)
    return ids


def get_permission(member: object) -> Optional[PermissionTier]:
    """Return the highest tier ``member`` holds, or ``None`` for no access."""

    if member is None:
        return None
    perms = getattr(member, "guild_permissions", None)
    if perms is not None and getattr(perms, "administrator", False):
        return PermissionTier.FULL
    roles = _role_ids(member)
    if roles & get_admin_role_ids():
        return PermissionTier.FULL
    if roles & get_team_lead_role_ids():
        return PermissionTier.DATA_ONLY
    if roles & get_staff_role_ids():
        return PermissionTier.OWN_TASKS
    return None


def has_permission(member: object, required: PermissionTier) -> bool:
    tier = get_permission(member)
    if tier is None:
        return False
    return tier >= required


def can_see_costs(member: object) -> bool:
    return get_permission(member) == PermissionTier.FULL


def require_tier(required: PermissionTier):
    """``app_commands`` check decorator gating a command on ``required``."""

    async def predicate(interaction: discord.Interaction) -> bool:
        if has_permission(interaction.user, required):
            return True
        raise MissingTier(required)

    return app_commands.check(predicate)


__all__ = [
    "MissingTier",
    "PermissionTier",
    "can_see_costs",
    "get_permission",
    "has_permission",
    "require_tier",
]
