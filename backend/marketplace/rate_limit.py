from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.config import InteractionLimits, interaction_limits
from marketplace.leads import ensure_lead
from marketplace.models import InteractionRecord, Property, User
from marketplace.notifications import notify_new_lead

logger = logging.getLogger(__name__)

ACTION_TYPES = ("view_owner", "chat_owner")
RESET_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

Clock = Callable[[], dt.datetime]


class InvalidInteraction(ValueError):
    pass


class StorageUnavailable(RuntimeError):
    pass


@dataclass(frozen=True)
class QuotaSnapshot:
    used_attempts: int
    remaining_attempts: int
    max_attempts: int
    can_perform_action: bool
    reset_time: dt.datetime | None

    @property
    def reset_time_seconds(self) -> int | None:
        if self.reset_time is None:
            return None
        return int(self.reset_time.timestamp())

    def as_dict(self, *, action_type: str = "", property_id: int = 0) -> dict[str, Any]:
        return {
            "remaining_attempts": self.remaining_attempts,
            "max_attempts": self.max_attempts,
            "used_attempts": self.used_attempts,
            "can_perform_action": self.can_perform_action,
            "reset_time": self.reset_time.strftime(RESET_TIME_FORMAT) if self.reset_time else None,
            "reset_time_seconds": self.reset_time_seconds,
            "action_type": action_type,
            "property_id": int(property_id or 0),
        }


class QuotaExceeded(Exception):
    def __init__(self, snapshot: QuotaSnapshot, message: str = "Daily interaction limit reached. Try again after 12 hours.") -> None:
        super().__init__(message)
        self.snapshot = snapshot
        self.message = message

    def as_dict(self) -> dict[str, Any]:
        return {
            "remaining_attempts": 0,
            "max_attempts": self.snapshot.max_attempts,
            "used_attempts": self.snapshot.used_attempts,
            "reset_time": self.snapshot.reset_time.strftime(RESET_TIME_FORMAT) if self.snapshot.reset_time else None,
            "reset_time_seconds": self.snapshot.reset_time_seconds,
            "message": self.message,
        }


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(value: dt.datetime | None) -> dt.datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


class InteractionLimiter:
    """
    Global per-buyer quota over the interaction ledger.

    view_owner and chat_owner share one allowance of `max_attempts` per trailing
    `window_hours`; property id and action type never narrow the count.
    """

    _STRIPES = 64

    def __init__(self, limits: InteractionLimits | None = None, clock: Clock | None = None) -> None:
        self.limits = limits or interaction_limits()
        self.clock = clock or _utcnow
        # check-count-insert is serialized per buyer inside this process only.
        self._locks = [Lock() for _ in range(self._STRIPES)]

    def _lock_for(self, buyer_id: int) -> Lock:
        return self._locks[int(buyer_id) % self._STRIPES]

    def _window_stats(self, db: Session, buyer_id: int, now: dt.datetime) -> tuple[int, dt.datetime | None]:
        cutoff = now - dt.timedelta(hours=self.limits.window_hours)
        try:
            row = db.execute(
                select(func.count(InteractionRecord.id), func.min(InteractionRecord.timestamp)).where(
                    (InteractionRecord.buyer_id == int(buyer_id))
                    & (InteractionRecord.action_type.in_(ACTION_TYPES))
                    & (InteractionRecord.timestamp >= cutoff)
                )
            ).one()
        except SQLAlchemyError as exc:
            raise StorageUnavailable("Interaction ledger unavailable") from exc
        return int(row[0] or 0), _as_utc(row[1])

    def _snapshot(self, used: int, first_attempt: dt.datetime | None, now: dt.datetime) -> QuotaSnapshot:
        max_attempts = int(self.limits.max_attempts)
        remaining = max(0, max_attempts - used)
        reset_time: dt.datetime | None = None
        if used >= max_attempts:
            # Rolling reset from the moment of the check, not from the oldest record.
            reset_time = now + dt.timedelta(hours=self.limits.window_hours)
        elif used > 0 and first_attempt is not None:
            reset_time = first_attempt + dt.timedelta(hours=self.limits.window_hours)
        return QuotaSnapshot(
            used_attempts=used,
            remaining_attempts=remaining,
            max_attempts=max_attempts,
            can_perform_action=remaining > 0,
            reset_time=reset_time,
        )

    def check(self, db: Session, buyer_id: int) -> QuotaSnapshot:
        now = _as_utc(self.clock())
        used, first_attempt = self._window_stats(db, buyer_id, now)
        return self._snapshot(used, first_attempt, now)

    def record(self, db: Session, *, buyer_id: int, property_id: int, action_type: str) -> QuotaSnapshot:
        action_type = (action_type or "").strip()
        if not property_id or int(property_id) <= 0:
            raise InvalidInteraction("Property ID is required")
        if action_type not in ACTION_TYPES:
            raise InvalidInteraction('Invalid action type. Must be "view_owner" or "chat_owner"')

        with self._lock_for(buyer_id):
            now = _as_utc(self.clock())
            used, first_attempt = self._window_stats(db, buyer_id, now)
            if used >= self.limits.max_attempts:
                snap = self._snapshot(used, first_attempt, now)
                logger.warning("Interaction quota exhausted buyer_id=%s used=%s", buyer_id, used)
                raise QuotaExceeded(
                    snap,
                    message=f"Daily interaction limit reached. Try again after {self.limits.window_hours} hours.",
                )

            try:
                db.add(
                    InteractionRecord(
                        buyer_id=int(buyer_id),
                        property_id=int(property_id),
                        action_type=action_type,
                        timestamp=now,
                    )
                )
                db.flush()
                lead_created = self._record_lead(db, buyer_id, int(property_id), now) if action_type == "view_owner" else False
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise StorageUnavailable("Failed to record interaction") from exc

        # Only check-count-insert-commit is serialized; the rest may block on I/O.
        logger.info("Interaction recorded buyer_id=%s property_id=%s action=%s", buyer_id, property_id, action_type)
        if lead_created:
            self._notify_seller(db, buyer_id, int(property_id))

        used, first_attempt = self._window_stats(db, buyer_id, now)
        return self._snapshot(used, first_attempt, now)

    def _record_lead(self, db: Session, buyer_id: int, property_id: int, now: dt.datetime) -> bool:
        # Never fails the interaction; the savepoint keeps the ledger insert intact.
        try:
            with db.begin_nested():
                seller_id = db.execute(select(Property.owner_id).where(Property.id == property_id)).scalar()
                if not seller_id:
                    logger.warning("Lead skipped: property %s has no owner", property_id)
                    return False
                return ensure_lead(db, buyer_id=buyer_id, property_id=property_id, seller_id=int(seller_id), created_at=now)
        except Exception:
            logger.warning("Lead insert failed buyer_id=%s property_id=%s", buyer_id, property_id, exc_info=True)
            return False

    def _notify_seller(self, db: Session, buyer_id: int, property_id: int) -> None:
        try:
            prop = db.get(Property, property_id)
            seller = db.get(User, prop.owner_id) if prop else None
            buyer = db.get(User, int(buyer_id))
            if not prop or not seller:
                return
            notify_new_lead(
                seller_id=seller.id,
                seller_email=seller.email,
                buyer_id=int(buyer_id),
                buyer_name=buyer.name if buyer else "",
                property_id=prop.id,
                property_title=prop.title,
            )
        except Exception:
            # Never block the interaction due to notification errors.
            logger.warning("Lead notification failed buyer_id=%s property_id=%s", buyer_id, property_id, exc_info=True)


limiter = InteractionLimiter()
