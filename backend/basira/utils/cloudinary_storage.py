from __future__ import annotations

import logging
from typing import Literal

import cloudinary.uploader

from basira.utils.cloudinary_config import configure_cloudinary

logger = logging.getLogger(__name__)

ResourceType = Literal["image", "video"]


def cloudinary_enabled() -> bool:
    return configure_cloudinary()


def destroy(*, public_id: str, resource_type: ResourceType = "image") -> bool:
    """
    Delete one hosted asset. Returns False when there is nothing to do
    (empty id, storage not configured). SDK errors propagate to the caller.
    """
    pid = (public_id or "").strip()
    if not pid:
        return False
    if not cloudinary_enabled():
        logger.info("Cloudinary not configured; skipping delete of %s", pid)
        return False
    res = cloudinary.uploader.destroy(pid, resource_type=resource_type, invalidate=True)
    result = str((res or {}).get("result") or "")
    if result not in {"ok", "not found"}:
        raise RuntimeError(f"Cloudinary destroy failed for {pid}: {result or 'no result'}")
    return result == "ok"
