from __future__ import annotations

import datetime as dt
import logging
from typing import Any

from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from marketplace.models import Lead, Property, User

logger = logging.getLogger(__name__)


def _insert_ignore_stmt(dialect: str, values: dict[str, Any]):
    table = Lead.__table__
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        return pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=["buyer_id", "property_id"])
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert(table).values(**values).on_conflict_do_nothing(index_elements=["buyer_id", "property_id"])
    if dialect in {"mysql", "mariadb"}:
        return insert(table).values(**values).prefix_with("IGNORE")
    return None


def ensure_lead(
    db: Session,
    *,
    buyer_id: int,
    property_id: int,
    seller_id: int,
    created_at: dt.datetime | None = None,
) -> bool:
    """
    Insert-or-ignore a lead for (buyer, property).

    Returns True when a new row was created, False when the pair already existed.
    Uniqueness is enforced by the storage layer, never by check-then-insert.
    """
    values = {
        "buyer_id": int(buyer_id),
        "property_id": int(property_id),
        "seller_id": int(seller_id),
        "created_at": created_at or dt.datetime.now(dt.timezone.utc),
    }
    stmt = _insert_ignore_stmt(db.get_bind().dialect.name, values)
    if stmt is not None:
        res = db.execute(stmt)
        return bool(res.rowcount)

    # Other dialects: rely on the unique constraint inside a savepoint.
    try:
        with db.begin_nested():
            db.execute(insert(Lead.__table__).values(**values))
        return True
    except IntegrityError:
        return False


def _lead_out(lead: Lead, prop: Property | None, buyer: User | None) -> dict[str, Any]:
    return {
        "id": lead.id,
        "buyer_id": lead.buyer_id,
        "property_id": lead.property_id,
        "seller_id": lead.seller_id,
        "property_title": (prop.title if prop else "") or "Property",
        "buyer_name": (buyer.name if buyer else "") or "Buyer",
        "buyer_email": (buyer.email if buyer else "") or "",
        "buyer_phone": (buyer.phone if buyer else "") or "",
        "created_at": lead.created_at.isoformat() if lead.created_at else None,
    }


def list_seller_leads(db: Session, *, seller_id: int) -> list[dict[str, Any]]:
    """Leads for properties owned by `seller_id`, newest first."""
    rows = db.execute(
        select(Lead, Property, User)
        .join(Property, Property.id == Lead.property_id)
        .join(User, User.id == Lead.buyer_id)
        .where(Lead.seller_id == int(seller_id))
        .order_by(Lead.created_at.desc(), Lead.id.desc())
    ).all()
    return [_lead_out(lead, prop, buyer) for lead, prop, buyer in rows]


def list_all_leads(db: Session, *, page: int = 1, limit: int = 20) -> dict[str, Any]:
    page = max(1, int(page or 1))
    limit = min(100, max(1, int(limit or 20)))
    seller = aliased(User)
    buyer = aliased(User)
    total = db.execute(select(func.count(Lead.id))).scalar() or 0
    rows = db.execute(
        select(Lead, Property, buyer, seller)
        .join(Property, Property.id == Lead.property_id)
        .join(buyer, buyer.id == Lead.buyer_id)
        .join(seller, seller.id == Lead.seller_id)
        .order_by(Lead.created_at.desc(), Lead.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).all()
    items = []
    for lead, prop, b, s in rows:
        item = _lead_out(lead, prop, b)
        item["seller_name"] = (s.name or "").strip() or "Seller"
        item["seller_email"] = s.email or ""
        items.append(item)
    return {"total": int(total), "page": page, "limit": limit, "items": items}
