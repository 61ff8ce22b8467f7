from __future__ import annotations

import logging
import os

import cloudinary
import cloudinary.uploader

logger = logging.getLogger(__name__)


def _cloudinary_folder() -> str:
    return (os.getenv("CLOUDINARY_FOLDER") or "marketplace").strip() or "marketplace"


def cloudinary_enabled() -> bool:
    """
    Returns True when required Cloudinary env vars exist.
    """
    return bool(
        (os.getenv("CLOUDINARY_CLOUD_NAME") or "").strip()
        and (os.getenv("CLOUDINARY_API_KEY") or "").strip()
        and (os.getenv("CLOUDINARY_API_SECRET") or "").strip()
    )


def _configure() -> None:
    cloudinary.config(
        cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
        api_key=os.getenv("CLOUDINARY_API_KEY"),
        api_secret=os.getenv("CLOUDINARY_API_SECRET"),
        secure=True,
    )


def mirror_approved_image(*, file_path: str, property_id: int, image_id: int) -> tuple[str, str]:
    """
    Upload an approved (already watermarked) image to Cloudinary.

    Returns (secure_url, public_id), or ("", "") when Cloudinary is not configured.
    """
    if not cloudinary_enabled():
        return "", ""
    if not os.path.isfile(file_path):
        return "", ""

    _configure()
    res = cloudinary.uploader.upload(
        file_path,
        resource_type="image",
        folder=f"{_cloudinary_folder()}/properties/{int(property_id)}",
        public_id=f"img_{int(image_id)}",
        overwrite=True,
        type="upload",
        invalidate=True,
    )
    url = str(res.get("secure_url") or "").strip()
    pid = str(res.get("public_id") or "").strip()
    if not url or not pid:
        return "", ""
    return url, pid
