from __future__ import annotations

import logging
import os
import shutil

from marketplace.config import upload_base_url, uploads_dir

logger = logging.getLogger(__name__)


def ensure_dir(path: str) -> bool:
    try:
        os.makedirs(path, exist_ok=True)
        return True
    except OSError:
        logger.warning("Failed to create directory %s", path, exc_info=True)
        return False


def move_file(source: str, destination: str) -> bool:
    """
    Move `source` to `destination`, creating the destination folder if needed.

    `shutil.move` already falls back to copy + delete across filesystems.
    """
    if not ensure_dir(os.path.dirname(destination) or "."):
        return False
    try:
        shutil.move(source, destination)
        return True
    except (OSError, shutil.Error):
        logger.warning("Failed to move file from %s to %s", source, destination, exc_info=True)
        return False


def abs_upload_path(rel_path: str) -> str:
    rel = (rel_path or "").replace("\\", "/").lstrip("/")
    return os.path.join(uploads_dir(), *rel.split("/"))


def public_upload_url(rel_path: str) -> str | None:
    rel = (rel_path or "").replace("\\", "/").lstrip("/")
    if not rel:
        return None
    if rel.startswith(("http://", "https://")):
        return rel
    return f"{upload_base_url()}/{rel}"
