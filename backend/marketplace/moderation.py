from __future__ import annotations

import datetime as dt
import json
import logging
import os
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.config import min_image_dimensions, properties_dir, rejected_dir, review_dir
from marketplace.models import ModerationLog, ModerationQueueItem, PropertyImage
from marketplace.utils.blur_detector import BlurDetector
from marketplace.utils.cloudinary_storage import mirror_approved_image
from marketplace.utils.files import abs_upload_path, ensure_dir, move_file, public_upload_url
from marketplace.utils.watermark import add_watermark

logger = logging.getLogger(__name__)

OPEN = "OPEN"
APPROVED = "APPROVED"
REJECTED = "REJECTED"

REJECTION_MESSAGES = {
    "blur_detected": "You have uploaded a blurry image. Please upload a clear and sharp photo.",
    "low_quality": "You have uploaded a low quality image. Your image is {width}x{height} pixels. Minimum required is {min_width}x{min_height} pixels.",
}


class QueueItemNotFound(LookupError):
    pass


class ReviewFileMissing(LookupError):
    pass


class FileMoveError(RuntimeError):
    pass


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _log_moderation(db: Session, *, actor_user_id: int | None, entity_type: str, entity_id: int, action: str, reason: str = "") -> None:
    db.add(
        ModerationLog(
            actor_user_id=int(actor_user_id) if actor_user_id else None,
            entity_type=(entity_type or "").strip(),
            entity_id=int(entity_id),
            action=(action or "").strip(),
            reason=(reason or "").strip(),
        )
    )


def _confidence_scores(raw: str | None) -> dict[str, Any]:
    try:
        data = json.loads(raw or "{}")
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def _item_out(item: ModerationQueueItem, img: PropertyImage) -> dict[str, Any]:
    return {
        "id": item.id,
        "property_image_id": item.property_image_id,
        "property_id": img.property_id,
        "file_path": img.file_path,
        "image_url": public_upload_url(img.file_path),
        "original_filename": img.original_filename,
        "reason_for_review": item.reason_for_review,
        "confidence_scores": _confidence_scores(img.confidence_scores),
        "moderation_status": img.moderation_status,
        "moderation_reason": img.moderation_reason,
        "status": item.status,
        "reviewer_id": item.reviewer_id,
        "review_notes": item.review_notes,
        "reviewed_at": item.reviewed_at.isoformat() if item.reviewed_at else None,
        "created_at": item.created_at.isoformat() if item.created_at else None,
    }


# -----------------------
# Read side
# -----------------------
def list_open(db: Session, *, page: int = 1, limit: int = 20) -> dict[str, Any]:
    page = max(1, int(page or 1))
    limit = min(100, max(1, int(limit or 20)))
    base = (
        select(ModerationQueueItem, PropertyImage)
        .join(PropertyImage, PropertyImage.id == ModerationQueueItem.property_image_id)
        .where(ModerationQueueItem.status == OPEN)
    )
    total = db.execute(select(func.count()).select_from(base.subquery())).scalar() or 0
    rows = db.execute(
        base.order_by(ModerationQueueItem.created_at.asc(), ModerationQueueItem.id.asc()).limit(limit).offset((page - 1) * limit)
    ).all()
    return {
        "total": int(total),
        "page": page,
        "limit": limit,
        "items": [_item_out(item, img) for item, img in rows],
    }


def get_item(db: Session, queue_id: int) -> dict[str, Any]:
    row = db.execute(
        select(ModerationQueueItem, PropertyImage)
        .join(PropertyImage, PropertyImage.id == ModerationQueueItem.property_image_id)
        .where(ModerationQueueItem.id == int(queue_id))
    ).first()
    if not row:
        raise QueueItemNotFound("Queue item not found")
    return _item_out(row[0], row[1])


def _load_open(db: Session, queue_id: int) -> tuple[ModerationQueueItem, PropertyImage]:
    row = db.execute(
        select(ModerationQueueItem, PropertyImage)
        .join(PropertyImage, PropertyImage.id == ModerationQueueItem.property_image_id)
        .where((ModerationQueueItem.id == int(queue_id)) & (ModerationQueueItem.status == OPEN))
    ).first()
    if not row:
        raise QueueItemNotFound("Queue item not found or already processed")
    return row[0], row[1]


def _claim(db: Session, queue_id: int, *, status: str, reviewer_id: int, notes: str, now: dt.datetime) -> bool:
    # Conditional transition: only one reviewer can move an item out of OPEN.
    res = db.execute(
        update(ModerationQueueItem)
        .where((ModerationQueueItem.id == int(queue_id)) & (ModerationQueueItem.status == OPEN))
        .values(status=status, reviewer_id=int(reviewer_id), review_notes=notes, reviewed_at=now)
    )
    return res.rowcount == 1


def _put_back(src: str, dst: str, queue_id: int) -> None:
    if not move_file(src, dst):
        logger.error("Image left at %s after aborted review (queue_id=%s)", src, queue_id)


# -----------------------
# Admin decisions
# -----------------------
def approve(
    db: Session,
    *,
    queue_id: int,
    reviewer_id: int,
    review_notes: str = "",
    watermark: Callable[[str], bool] = add_watermark,
    clock: Callable[[], dt.datetime] = _utcnow,
) -> dict[str, Any]:
    """
    OPEN -> APPROVED.

    The staged file must exist: it is moved into properties/<property_id>/ and
    watermarked before the row updates are committed, so a committed SAFE row
    always points at a file that is in place. Watermarking is best-effort.
    """
    item, img = _load_open(db, queue_id)
    notes = (review_notes or "").strip()

    filename = os.path.basename(img.file_path or "")
    review_path = os.path.join(review_dir(), filename)
    if not filename or not os.path.isfile(review_path):
        raise ReviewFileMissing("Image file not found in review folder")

    property_dir = os.path.join(properties_dir(), str(int(img.property_id)))
    if not ensure_dir(property_dir):
        raise FileMoveError("Failed to create property folder")
    final_path = os.path.join(property_dir, filename)
    if not move_file(review_path, final_path):
        raise FileMoveError("Failed to move approved image")

    try:
        if not watermark(final_path):
            logger.warning("Watermark not applied to approved image %s", final_path)
    except Exception:
        logger.warning("Watermark failed for approved image %s", final_path, exc_info=True)

    new_rel = f"properties/{int(img.property_id)}/{filename}"
    now = clock()
    try:
        claimed = _claim(db, item.id, status=APPROVED, reviewer_id=reviewer_id, notes=notes, now=now)
        if claimed:
            img.moderation_status = "SAFE"
            img.manual_reviewed = True
            img.manual_reviewer_id = int(reviewer_id)
            img.manual_review_notes = notes
            img.file_path = new_rel
            img.checked_at = now
            _log_moderation(db, actor_user_id=reviewer_id, entity_type="property_image", entity_id=img.id, action="approve", reason=notes)
            db.commit()
        else:
            db.rollback()
    except SQLAlchemyError:
        db.rollback()
        # Put the file back so the still-OPEN item can be retried.
        _put_back(final_path, review_path, queue_id)
        raise

    if not claimed:
        # Another reviewer resolved the item after it was loaded.
        _put_back(final_path, review_path, queue_id)
        logger.warning("Moderation queue item %s was resolved concurrently; approval dropped", queue_id)
        raise QueueItemNotFound("Queue item not found or already processed")

    logger.info("Moderation queue item %s approved by %s", queue_id, reviewer_id)
    try:
        mirror_approved_image(file_path=final_path, property_id=int(img.property_id), image_id=int(img.id))
    except Exception:
        logger.warning("Cloudinary mirror failed for image %s", img.id, exc_info=True)

    return {"status": "success", "message": "Image approved", "image_url": public_upload_url(new_rel)}


def reject(
    db: Session,
    *,
    queue_id: int,
    reviewer_id: int,
    review_notes: str = "",
    clock: Callable[[], dt.datetime] = _utcnow,
) -> dict[str, Any]:
    """
    OPEN -> REJECTED.

    Rejection is final regardless of the filesystem: a failed move is logged and
    the stored file_path only changes when the move actually happened.
    """
    item, img = _load_open(db, queue_id)
    notes = (review_notes or "").strip()

    new_rel: str | None = None
    filename = os.path.basename(img.file_path or "")
    review_path = os.path.join(review_dir(), filename)
    if filename and os.path.isfile(review_path):
        if not ensure_dir(rejected_dir()):
            logger.warning("Failed to create rejected directory")
        elif move_file(review_path, os.path.join(rejected_dir(), filename)):
            new_rel = f"rejected/{filename}"
        else:
            logger.warning("Failed to move %s to rejected folder; rejecting anyway", review_path)

    now = clock()
    try:
        claimed = _claim(db, item.id, status=REJECTED, reviewer_id=reviewer_id, notes=notes, now=now)
        if claimed:
            img.moderation_status = REJECTED
            img.manual_reviewed = True
            img.manual_reviewer_id = int(reviewer_id)
            img.manual_review_notes = notes
            img.checked_at = now
            if new_rel:
                img.file_path = new_rel
            _log_moderation(db, actor_user_id=reviewer_id, entity_type="property_image", entity_id=img.id, action="reject", reason=notes)
            db.commit()
        else:
            db.rollback()
    except SQLAlchemyError:
        db.rollback()
        if new_rel:
            _put_back(os.path.join(rejected_dir(), filename), review_path, queue_id)
        raise

    if not claimed:
        if new_rel:
            _put_back(os.path.join(rejected_dir(), filename), review_path, queue_id)
        logger.warning("Moderation queue item %s was resolved concurrently; rejection dropped", queue_id)
        raise QueueItemNotFound("Queue item not found or already processed")

    logger.info("Moderation queue item %s rejected by %s", queue_id, reviewer_id)
    return {"status": "success", "message": "Image rejected"}


# -----------------------
# Automated screening
# -----------------------
def enqueue_for_review(db: Session, *, image: PropertyImage, reason: str) -> ModerationQueueItem:
    """Open a review item for `image`, reusing the existing OPEN one if any."""
    existing = db.execute(
        select(ModerationQueueItem).where(
            (ModerationQueueItem.property_image_id == image.id) & (ModerationQueueItem.status == OPEN)
        )
    ).scalar_one_or_none()
    if existing:
        return existing
    item = ModerationQueueItem(property_image_id=image.id, reason_for_review=(reason or "").strip(), status=OPEN)
    db.add(item)
    db.flush()
    _log_moderation(db, actor_user_id=None, entity_type="moderation_queue", entity_id=item.id, action="enqueue", reason=item.reason_for_review)
    return item


def screen_image(
    db: Session,
    image: PropertyImage,
    *,
    detector: BlurDetector | None = None,
    clock: Callable[[], dt.datetime] = _utcnow,
) -> dict[str, Any]:
    """
    Run the automated quality checks on a staged image and route it.

    Blurry or undersized images are rejected (file moved to rejected/);
    everything else waits for a human in the moderation queue.
    """
    detector = detector or BlurDetector()
    result = detector.detect(abs_upload_path(image.file_path))

    scores = _confidence_scores(image.confidence_scores)
    scores["blur"] = result.as_dict()
    image.confidence_scores = json.dumps(scores)
    image.blur_score = result.blur_score
    image.blur_variance = result.variance
    image.checked_at = clock()

    min_w, min_h = min_image_dimensions()
    reason_code = ""
    if result.is_blurry:
        reason_code = "blur_detected"
        message = REJECTION_MESSAGES["blur_detected"]
    elif result.width < min_w or result.height < min_h:
        reason_code = "low_quality"
        message = REJECTION_MESSAGES["low_quality"].format(
            width=result.width, height=result.height, min_width=min_w, min_height=min_h
        )

    if reason_code:
        image.moderation_status = REJECTED
        image.moderation_reason = message
        filename = os.path.basename(image.file_path or "")
        src = os.path.join(review_dir(), filename)
        if filename and os.path.isfile(src) and move_file(src, os.path.join(rejected_dir(), filename)):
            image.file_path = f"rejected/{filename}"
        _log_moderation(db, actor_user_id=None, entity_type="property_image", entity_id=image.id, action="auto_reject", reason=reason_code)
        db.flush()
        logger.info("Image %s auto-rejected (%s)", image.id, reason_code)
        return {"image_id": image.id, "moderation_status": REJECTED, "reason": reason_code, "message": message, "queue_id": None}

    reason = "Automated checks passed - requires manual review"
    if result.method == "fallback":
        reason = "Blur check ran in fallback mode - requires manual review"
    elif result.blur_severity == "MEDIUM":
        reason = "Medium blur detected - requires manual review"
    image.moderation_status = "NEEDS_REVIEW"
    image.moderation_reason = reason
    item = enqueue_for_review(db, image=image, reason=reason)
    logger.info("Image %s queued for manual review (queue_id=%s)", image.id, item.id)
    return {"image_id": image.id, "moderation_status": "NEEDS_REVIEW", "reason": reason, "message": "Image requires review", "queue_id": item.id}
