from __future__ import annotations

import datetime as dt

import pytest
from sqlalchemy import func, select

from marketplace.models import Base, InteractionRecord, Lead
from marketplace.rate_limit import InvalidInteraction, QuotaExceeded, StorageUnavailable


def _ledger_count(db, buyer_id: int) -> int:
    return db.execute(select(func.count(InteractionRecord.id)).where(InteractionRecord.buyer_id == buyer_id)).scalar()


def test_check_with_empty_ledger(db, seed, limiter):
    snap = limiter.check(db, seed.buyer.id)

    assert snap.used_attempts == 0
    assert snap.remaining_attempts == 5
    assert snap.max_attempts == 5
    assert snap.can_perform_action is True
    assert snap.reset_time is None
    assert snap.reset_time_seconds is None


def test_used_attempts_tracks_recorded_interactions(db, seed, limiter, clock):
    for k in range(1, 6):
        snap = limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="chat_owner")
        assert snap.used_attempts == k
        assert snap.remaining_attempts + snap.used_attempts == snap.max_attempts
        assert limiter.check(db, seed.buyer.id).used_attempts == k
        clock.advance(seconds=5)


def test_reset_time_counts_from_first_attempt_in_window(db, seed, limiter, clock):
    first = clock.now
    limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="view_owner")
    clock.advance(minutes=30)
    limiter.record(db, buyer_id=seed.buyer.id, property_id=8, action_type="chat_owner")

    snap = limiter.check(db, seed.buyer.id)
    assert snap.used_attempts == 2
    assert snap.reset_time == first + dt.timedelta(hours=12)
    assert snap.reset_time_seconds == int((first + dt.timedelta(hours=12)).timestamp())


def test_limit_is_global_across_properties_and_action_types(db, seed, limiter):
    for pid, action in [(7, "view_owner"), (8, "chat_owner"), (7, "chat_owner"), (99, "view_owner"), (8, "view_owner")]:
        limiter.record(db, buyer_id=seed.buyer.id, property_id=pid, action_type=action)

    with pytest.raises(QuotaExceeded) as excinfo:
        limiter.record(db, buyer_id=seed.buyer.id, property_id=1234, action_type="chat_owner")

    payload = excinfo.value.as_dict()
    assert payload["remaining_attempts"] == 0
    assert payload["used_attempts"] == 5
    assert payload["max_attempts"] == 5
    assert payload["reset_time"] is not None
    assert "12 hours" in payload["message"]
    assert _ledger_count(db, seed.buyer.id) == 5


def test_exhausted_reset_time_rolls_forward_from_now(db, seed, limiter, clock):
    for _ in range(5):
        limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="chat_owner")

    snap = limiter.check(db, seed.buyer.id)
    assert snap.can_perform_action is False
    assert snap.reset_time == clock.now + dt.timedelta(hours=12)

    clock.advance(hours=1)
    later = limiter.check(db, seed.buyer.id)
    assert later.reset_time == clock.now + dt.timedelta(hours=12)
    assert later.reset_time > snap.reset_time


def test_records_older_than_window_are_ignored(db, seed, limiter, clock):
    db.add(
        InteractionRecord(
            buyer_id=seed.buyer.id,
            property_id=7,
            action_type="view_owner",
            timestamp=clock.now - dt.timedelta(hours=13),
        )
    )
    db.commit()

    snap = limiter.check(db, seed.buyer.id)
    assert snap.used_attempts == 0
    assert snap.reset_time is None


def test_quota_frees_up_once_window_passes(db, seed, limiter, clock):
    for _ in range(5):
        limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="chat_owner")
    with pytest.raises(QuotaExceeded):
        limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="chat_owner")

    clock.advance(hours=12, seconds=1)
    assert limiter.check(db, seed.buyer.id).used_attempts == 0
    snap = limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="chat_owner")
    assert snap.used_attempts == 1


def test_buyers_do_not_share_quota(db, seed, limiter):
    for _ in range(5):
        limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="chat_owner")

    snap = limiter.check(db, seed.seller.id)
    assert snap.used_attempts == 0
    assert snap.can_perform_action is True


@pytest.mark.parametrize(
    "property_id,action_type,message",
    [
        (0, "view_owner", "Property ID is required"),
        (7, "call_owner", 'Invalid action type. Must be "view_owner" or "chat_owner"'),
        (7, "", 'Invalid action type. Must be "view_owner" or "chat_owner"'),
    ],
)
def test_invalid_interactions_are_rejected_without_writing(db, seed, limiter, property_id, action_type, message):
    with pytest.raises(InvalidInteraction, match=message):
        limiter.record(db, buyer_id=seed.buyer.id, property_id=property_id, action_type=action_type)
    assert _ledger_count(db, seed.buyer.id) == 0


def test_view_owner_creates_a_single_lead(db, seed, limiter):
    limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="view_owner")
    limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="view_owner")

    leads = db.execute(select(Lead)).scalars().all()
    assert len(leads) == 1
    assert (leads[0].buyer_id, leads[0].property_id, leads[0].seller_id) == (42, 7, 2)


def test_chat_owner_does_not_create_lead(db, seed, limiter):
    limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="chat_owner")
    assert db.execute(select(func.count(Lead.id))).scalar() == 0


def test_unknown_property_still_records_interaction(db, seed, limiter):
    snap = limiter.record(db, buyer_id=seed.buyer.id, property_id=999, action_type="view_owner")

    assert snap.used_attempts == 1
    assert db.execute(select(func.count(Lead.id))).scalar() == 0


def test_seller_notified_only_for_new_leads(db, seed, limiter, monkeypatch):
    calls = []
    monkeypatch.setattr("marketplace.rate_limit.notify_new_lead", lambda **kw: calls.append(kw) or "console")

    limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="view_owner")
    limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="view_owner")

    assert len(calls) == 1
    assert calls[0]["seller_id"] == 2
    assert calls[0]["buyer_name"] == "Bea Buyer"
    assert calls[0]["property_title"] == "Sea view flat"


def test_notification_failure_does_not_fail_interaction(db, seed, limiter, monkeypatch):
    def boom(**kw):
        raise RuntimeError("webhook down")

    monkeypatch.setattr("marketplace.rate_limit.notify_new_lead", boom)

    snap = limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="view_owner")
    assert snap.used_attempts == 1
    assert db.execute(select(func.count(Lead.id))).scalar() == 1


def test_seller_notification_runs_outside_buyer_lock(db, seed, limiter, monkeypatch):
    held = []

    def notify(**kw):
        # Buyer 106 shares buyer 42's lock stripe.
        stripe = limiter._lock_for(106)
        held.append(stripe.locked())
        return "webhook"

    assert limiter._lock_for(106) is limiter._lock_for(seed.buyer.id)
    monkeypatch.setattr("marketplace.rate_limit.notify_new_lead", notify)

    snap = limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="view_owner")

    assert held == [False]
    assert snap.used_attempts == 1


@pytest.mark.parametrize("error", ["storage", "unexpected"])
def test_lead_failure_does_not_fail_interaction(db, seed, limiter, monkeypatch, error):
    from sqlalchemy.exc import OperationalError

    def broken(*args, **kwargs):
        if error == "storage":
            raise OperationalError("INSERT INTO leads", {}, Exception("disk I/O error"))
        raise ValueError("bad seller id")

    monkeypatch.setattr("marketplace.rate_limit.ensure_lead", broken)

    snap = limiter.record(db, buyer_id=seed.buyer.id, property_id=7, action_type="view_owner")
    assert snap.used_attempts == 1
    assert _ledger_count(db, seed.buyer.id) == 1
    assert db.execute(select(func.count(Lead.id))).scalar() == 0


def test_unreachable_ledger_surfaces_storage_error(db, seed, limiter, engine):
    Base.metadata.tables["buyer_interaction_limits"].drop(engine)

    with pytest.raises(StorageUnavailable):
        limiter.check(db, seed.buyer.id)
