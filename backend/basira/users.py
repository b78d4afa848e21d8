"""
Actor management rules shared by the `/auth` and `/users` routes.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from basira.errors import Forbidden, NotFound, ValidationFailed
from basira.models import Inquiry, Lead, ModerationLog, Property, User
from basira.permissions import actor_hierarchy, can_manage
from basira.roles import ADMIN_FAMILY, Role, assign_role, decode_role, hierarchy_for_role
from basira.security import hash_password

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def email_taken(db: Session, email: str, *, exclude_id: int | None = None) -> bool:
    stmt = select(User.id).where(User.email == normalize_email(email))
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    return db.execute(stmt.limit(1)).first() is not None


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    name: str,
    phone: str = "",
    role: Role = Role.USER,
    created_by: User | None = None,
) -> User:
    """
    Create an actor with its role snapshot. When `created_by` is given the new
    role may not outrank the creator.
    """
    if created_by is not None and hierarchy_for_role(role) < actor_hierarchy(created_by):
        raise Forbidden("Cannot create a user with higher authority than yourself")
    if email_taken(db, email):
        raise ValidationFailed("User already exists with this email")

    user = User(
        email=normalize_email(email),
        name=(name or "").strip(),
        phone=(phone or "").strip(),
        password_hash=hash_password(password),
        is_active=True,
        created_by_id=created_by.id if created_by is not None else None,
    )
    assign_role(user, role)
    db.add(user)
    db.flush()
    return user


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def update_user(db: Session, target: User, caller: User, changes: dict[str, Any]) -> User:
    """
    Apply an admin edit. `changes` holds only the fields the caller sent
    (name, email, phone, role, is_active).
    """
    is_self = target.id == caller.id
    if not is_self and not can_manage(caller, target):
        raise Forbidden("Cannot modify user with equal or higher authority level")
    if is_self and changes.get("is_active") is False:
        raise Forbidden("Cannot deactivate your own account")

    if "role" in changes and changes["role"] is not None:
        new_role = decode_role(changes["role"])
        if new_role is None:
            raise ValidationFailed("Invalid role")
        if new_role.value != target.role:
            if hierarchy_for_role(new_role) <= actor_hierarchy(caller):
                raise Forbidden("Cannot assign role with equal or higher authority level than yourself")
            assign_role(target, new_role)

    if changes.get("email"):
        if email_taken(db, changes["email"], exclude_id=target.id):
            raise ValidationFailed("Email already in use")
        target.email = normalize_email(changes["email"])
    if changes.get("name") is not None:
        target.name = changes["name"].strip()
    if changes.get("phone") is not None:
        target.phone = changes["phone"].strip()
    if changes.get("is_active") is not None:
        target.is_active = bool(changes["is_active"])

    db.flush()
    return target


def delete_user(db: Session, target_id: int, caller: User) -> None:
    """
    Delete an actor after handing everything it authored to `caller`.

    Runs inside the caller's unit of work (`session_scope` / `get_db`): if any
    step fails the whole set of reassignments and the delete roll back together.
    """
    if target_id == caller.id:
        raise Forbidden("Cannot delete your own account")
    target = get_user_or_404(db, target_id)
    if not can_manage(caller, target):
        raise Forbidden("Cannot delete user with equal or higher authority level")

    steps = (
        update(Property).where(Property.created_by_id == target_id).values(created_by_id=caller.id),
        update(Property).where(Property.submitted_by_id == target_id).values(submitted_by_id=caller.id),
        update(Property).where(Property.approved_by_id == target_id).values(approved_by_id=None),
        update(Inquiry).where(Inquiry.assigned_to_id == target_id).values(assigned_to_id=None),
        update(Inquiry).where(Inquiry.user_id == target_id).values(user_id=None),
        update(Lead).where(Lead.assigned_to_id == target_id).values(assigned_to_id=None),
        update(ModerationLog).where(ModerationLog.actor_user_id == target_id).values(actor_user_id=caller.id),
        update(User).where(User.created_by_id == target_id).values(created_by_id=None),
    )
    for stmt in steps:
        db.execute(stmt.execution_options(synchronize_session=False))

    db.delete(target)
    db.flush()
    # Bulk updates bypassed the identity map.
    db.expire_all()
    logger.info("User %s deleted by %s; records reassigned", target_id, caller.id)


def user_stats(db: Session) -> dict[str, Any]:
    total = db.execute(select(func.count(User.id))).scalar_one()
    active = db.execute(select(func.count(User.id)).where(User.is_active.is_(True))).scalar_one()
    by_role = {r.value: 0 for r in Role}
    for role, count in db.execute(select(User.role, func.count(User.id)).group_by(User.role)):
        r = decode_role(role)
        if r is not None:
            by_role[r.value] += int(count)
    return {
        "total_users": int(total),
        "active_users": int(active),
        "inactive_users": int(total) - int(active),
        "by_role": by_role,
        "staff": sum(by_role[r.value] for r in ADMIN_FAMILY),
    }
