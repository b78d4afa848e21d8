"""
Permission evaluator.

Every predicate here is total: a missing, inactive or malformed actor means
"no authority", never an exception. Checks read the actor's stored snapshot
(`User.hierarchy`, `User.permissions`), not the live registry.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Annotated, Any

from fastapi import Depends

from basira.auth import get_current_user
from basira.errors import Forbidden
from basira.models import User
from basira.roles import ADMIN_FAMILY, LOWEST_RANK, PermissionFlag, Role, decode_role


def _flag_name(flag: Any) -> str:
    return flag.value if isinstance(flag, PermissionFlag) else str(flag)


def has_permission(actor: Any, flag: PermissionFlag | str) -> bool:
    if actor is None or not getattr(actor, "is_active", False):
        return False
    snapshot = getattr(actor, "permissions", None)
    if not isinstance(snapshot, Mapping):
        return False
    return snapshot.get(_flag_name(flag)) is True


def has_all_permissions(actor: Any, flags: Iterable[PermissionFlag | str]) -> bool:
    return all(has_permission(actor, f) for f in flags)


def has_any_permission(actor: Any, flags: Iterable[PermissionFlag | str]) -> bool:
    return any(has_permission(actor, f) for f in flags)


def actor_hierarchy(actor: Any) -> int:
    rank = getattr(actor, "hierarchy", None) if actor is not None else None
    if isinstance(rank, bool) or not isinstance(rank, int) or rank < 1:
        return LOWEST_RANK
    return rank


def actor_role(actor: Any) -> Role | None:
    if actor is None:
        return None
    return decode_role(getattr(actor, "role", None))


def meets_hierarchy(actor: Any, required_rank: int) -> bool:
    """Smaller rank = more authority; "meets" means at least as powerful as required."""
    return actor_hierarchy(actor) <= required_rank


def is_admin_family(actor: Any) -> bool:
    return actor_role(actor) in ADMIN_FAMILY


def can_manage(manager: Any, target: Any) -> bool:
    """
    Equal-or-lower authority targets only. Callers must separately refuse
    destructive self-actions (deactivate/delete own account).
    """
    if manager is None or target is None:
        return False
    return actor_hierarchy(manager) <= actor_hierarchy(target)


def can_auto_approve(actor: Any) -> bool:
    if actor is None:
        return False
    rank = actor_hierarchy(actor)
    if rank == 1 or actor_role(actor) is Role.ADMIN:
        return True
    if rank <= 3:
        return has_permission(actor, PermissionFlag.CAN_APPROVE_PROPERTIES)
    return False


def can_moderate_properties(actor: Any) -> bool:
    """Gate for approve/reject and the pending queue."""
    return meets_hierarchy(actor, 3) or has_permission(actor, PermissionFlag.CAN_APPROVE_PROPERTIES)


# -----------------------
# FastAPI dependency factories
# -----------------------
def require_hierarchy(rank: int):
    def _dep(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not meets_hierarchy(user, rank):
            raise Forbidden(f"Insufficient hierarchy level (requires {rank} or higher)")
        return user

    return _dep


def require_permission(*flags: PermissionFlag | str, require_all: bool = True):
    names = [_flag_name(f) for f in flags]

    def _dep(user: Annotated[User, Depends(get_current_user)]) -> User:
        ok = has_all_permissions(user, names) if require_all else has_any_permission(user, names)
        if not ok:
            joiner = " and " if require_all else " or "
            raise Forbidden(f"Missing permission: {joiner.join(names)}")
        return user

    return _dep


def require_admin_family():
    def _dep(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not is_admin_family(user):
            raise Forbidden("Admin access required")
        return user

    return _dep


def require_property_moderator():
    def _dep(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not can_moderate_properties(user):
            raise Forbidden("Insufficient hierarchy level (requires 3 or higher)")
        return user

    return _dep
