"""
Role registry.

Single source of truth for role -> hierarchy rank and role -> permission flags.
Rank 1 is the highest authority, 5 is a plain user.

Actors carry a *snapshot* of their role's flags (`User.permissions`) taken at
the last role assignment. The snapshot is authoritative for permission checks;
changing the tables below does not affect existing actors until
`assign_role()` runs again for them (or `resync_permission_snapshots()` is run
explicitly).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session


class Role(str, Enum):
    ADMIN = "admin"
    SALES_MANAGER = "sales_manager"
    SALES_TEAM_LEADER = "sales_team_leader"
    SALES_AGENT = "sales_agent"
    USER = "user"


class PermissionFlag(str, Enum):
    CAN_MANAGE_USERS = "can_manage_users"
    CAN_MANAGE_PROPERTIES = "can_manage_properties"
    CAN_APPROVE_PROPERTIES = "can_approve_properties"
    CAN_MANAGE_LAUNCHES = "can_manage_launches"
    CAN_MANAGE_DEVELOPERS = "can_manage_developers"
    CAN_MANAGE_INQUIRIES = "can_manage_inquiries"
    CAN_MANAGE_LEADS = "can_manage_leads"
    CAN_MANAGE_JOBS = "can_manage_jobs"
    CAN_ACCESS_DASHBOARD = "can_access_dashboard"
    CAN_BULK_UPLOAD = "can_bulk_upload"


LOWEST_RANK = 5

ROLE_HIERARCHY: dict[Role, int] = {
    Role.ADMIN: 1,
    Role.SALES_MANAGER: 2,
    Role.SALES_TEAM_LEADER: 3,
    Role.SALES_AGENT: 4,
    Role.USER: LOWEST_RANK,
}

ADMIN_FAMILY = frozenset({Role.ADMIN, Role.SALES_MANAGER, Role.SALES_TEAM_LEADER, Role.SALES_AGENT})

_F = PermissionFlag

# Flags granted per role; everything not listed is explicitly False.
_ROLE_GRANTS: dict[Role, frozenset[PermissionFlag]] = {
    Role.ADMIN: frozenset(PermissionFlag),
    Role.SALES_MANAGER: frozenset(
        {
            _F.CAN_MANAGE_PROPERTIES,
            _F.CAN_APPROVE_PROPERTIES,
            _F.CAN_MANAGE_LAUNCHES,
            _F.CAN_MANAGE_DEVELOPERS,
            _F.CAN_MANAGE_INQUIRIES,
            _F.CAN_MANAGE_LEADS,
            _F.CAN_MANAGE_JOBS,
            _F.CAN_ACCESS_DASHBOARD,
        }
    ),
    Role.SALES_TEAM_LEADER: frozenset(
        {
            _F.CAN_MANAGE_PROPERTIES,
            _F.CAN_APPROVE_PROPERTIES,
            _F.CAN_MANAGE_LEADS,
            _F.CAN_ACCESS_DASHBOARD,
        }
    ),
    Role.SALES_AGENT: frozenset({_F.CAN_MANAGE_PROPERTIES, _F.CAN_ACCESS_DASHBOARD}),
    Role.USER: frozenset(),
}

_DISPLAY_NAMES = {
    Role.ADMIN: "Admin",
    Role.SALES_MANAGER: "Sales Manager",
    Role.SALES_TEAM_LEADER: "Sales Team Leader",
    Role.SALES_AGENT: "Sales Agent",
    Role.USER: "User",
}


def decode_role(raw: Any) -> Role | None:
    """
    The one place external role spellings are parsed.

    Accepts a `Role`, or a string in any case with `-`/space in place of `_`
    ("SALES_AGENT", "sales-agent", " Sales Agent "). Returns None for anything
    unrecognised.
    """
    if isinstance(raw, Role):
        return raw
    if not isinstance(raw, str):
        return None
    key = "_".join(raw.strip().lower().replace("-", " ").split())
    try:
        return Role(key)
    except ValueError:
        return None


def encode_role(role: Role) -> str:
    return role.value


def hierarchy_for_role(role: Any) -> int:
    """Fixed rank for a role; unknown or missing roles get the lowest rank."""
    r = decode_role(role)
    if r is None:
        return LOWEST_RANK
    return ROLE_HIERARCHY[r]


def permissions_for_role(role: Any) -> dict[str, bool]:
    """
    Fully populated flag record for a role: every known flag is present and
    explicitly True/False. Unknown roles get all-False.
    """
    r = decode_role(role)
    granted = _ROLE_GRANTS.get(r, frozenset()) if r is not None else frozenset()
    return {flag.value: flag in granted for flag in PermissionFlag}


def role_display_name(role: Any) -> str:
    r = decode_role(role)
    return _DISPLAY_NAMES[r] if r is not None else "Unknown"


def assign_role(user: Any, role: Role) -> None:
    """
    Set an actor's role and overwrite its denormalized hierarchy/permission
    snapshot from the registry. This is the only writer of the snapshot.
    """
    user.role = encode_role(role)
    user.hierarchy = hierarchy_for_role(role)
    user.permissions = permissions_for_role(role)


def resync_permission_snapshots(db: Session, *, dry_run: bool = False) -> int:
    """
    Recompute the stored hierarchy/permission snapshot of every actor from the
    current registry. Returns the number of actors whose snapshot differed.
    Never runs implicitly.
    """
    from basira.models import User

    changed = 0
    for user in db.execute(select(User).order_by(User.id)).scalars():
        role = decode_role(user.role) or Role.USER
        expected_rank = hierarchy_for_role(role)
        expected_perms = permissions_for_role(role)
        if user.hierarchy == expected_rank and dict(user.permissions or {}) == expected_perms:
            continue
        changed += 1
        if not dry_run:
            assign_role(user, role)
    if not dry_run:
        db.flush()
    return changed
