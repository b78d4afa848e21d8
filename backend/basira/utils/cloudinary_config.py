from __future__ import annotations

import os

import cloudinary


def configure_cloudinary() -> bool:
    """
    Push credentials from the environment into the cloudinary SDK.
    Returns False (and configures nothing) when any credential is missing.
    """
    if not cloudinary_is_configured():
        return False
    cloudinary.config(
        cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
        api_key=os.getenv("CLOUDINARY_API_KEY"),
        api_secret=os.getenv("CLOUDINARY_API_SECRET"),
        secure=True,
    )
    return True


def cloudinary_is_configured() -> bool:
    """
    Returns True when required Cloudinary env vars exist.
    """
    return bool(
        (os.getenv("CLOUDINARY_CLOUD_NAME") or "").strip()
        and (os.getenv("CLOUDINARY_API_KEY") or "").strip()
        and (os.getenv("CLOUDINARY_API_SECRET") or "").strip()
    )
