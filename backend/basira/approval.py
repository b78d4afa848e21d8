"""
Property approval state machine.

    create/edit by auto-approver ──────────────► approved
    create/edit by anyone else ──► pending ──┬─► approved   (approve)
                                             └─► rejected   (reject)

approve/reject are one-shot: they are a conditional UPDATE on
`approval_status = 'pending'`, so of two racing moderators exactly one wins and
the other gets `InvalidState`.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from basira.errors import InvalidState, NotFound
from basira.models import ApprovalStatus, Property, User
from basira.permissions import can_auto_approve
from basira.roles import Role, decode_role
from basira.utils.cloudinary_storage import destroy as cloudinary_destroy

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "No reason provided"

ImageDeleter = Callable[..., Any]


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def decide_on_create(actor: Any, *, now: dt.datetime | None = None) -> dict[str, Any]:
    if can_auto_approve(actor):
        return {
            "approval_status": ApprovalStatus.APPROVED.value,
            "approved_by_id": actor.id,
            "approval_date": now or _now(),
        }
    return {
        "approval_status": ApprovalStatus.PENDING.value,
        "approved_by_id": None,
        "approval_date": None,
    }


def decide_on_edit(actor: Any, existing_status: str | None) -> dict[str, Any]:
    """
    Approval fields to write alongside an edit. Auto-approvers leave the
    approval state as it is; anyone else sends the property back to pending as
    re-submitter, whatever `existing_status` was.
    """
    if can_auto_approve(actor):
        return {}
    return {
        "approval_status": ApprovalStatus.PENDING.value,
        "submitted_by_id": actor.id,
        "approved_by_id": None,
        "approval_date": None,
        "rejection_reason": None,
    }


def _transition(db: Session, property_id: int, values: dict[str, Any]) -> Property:
    prop = db.get(Property, property_id)
    if prop is None:
        raise NotFound("Property not found")
    res = db.execute(
        update(Property)
        .where(Property.id == property_id, Property.approval_status == ApprovalStatus.PENDING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise InvalidState()
    db.refresh(prop)
    return prop


def approve(db: Session, property_id: int, actor: User) -> Property:
    prop = _transition(
        db,
        property_id,
        {
            "approval_status": ApprovalStatus.APPROVED.value,
            "approved_by_id": actor.id,
            "approval_date": _now(),
            "rejection_reason": None,
        },
    )
    logger.info("Property %s approved by user %s", property_id, actor.id)
    return prop


def reject(
    db: Session,
    property_id: int,
    actor: User,
    reason: str | None = None,
    *,
    destroy: ImageDeleter = cloudinary_destroy,
) -> tuple[Property, int]:
    """
    Reject a pending property. When the submitter is a plain user their hosted
    images are deleted best-effort (failures are logged and skipped) and the
    image rows dropped. Returns the property and the number of assets deleted.
    """
    prop = _transition(
        db,
        property_id,
        {
            "approval_status": ApprovalStatus.REJECTED.value,
            "approved_by_id": actor.id,
            "approval_date": _now(),
            "rejection_reason": (reason or "").strip() or DEFAULT_REJECTION_REASON,
        },
    )
    logger.info("Property %s rejected by user %s", property_id, actor.id)

    submitter = db.get(User, prop.submitted_by_id) if prop.submitted_by_id else None
    if submitter is None or decode_role(submitter.role) is not Role.USER:
        return prop, 0

    deleted = purge_hosted_images(prop, destroy=destroy)
    prop.images.clear()
    db.flush()
    return prop, deleted


def purge_hosted_images(prop: Property, *, destroy: ImageDeleter = cloudinary_destroy) -> int:
    """Best-effort delete of every hosted image; failures are logged, never raised."""
    deleted = 0
    for img in list(prop.images):
        if not (img.public_id or "").strip():
            continue
        try:
            if destroy(public_id=img.public_id, resource_type="image"):
                deleted += 1
        except Exception:
            logger.warning("Failed to delete image %s of property %s", img.public_id, prop.id, exc_info=True)
    return deleted
