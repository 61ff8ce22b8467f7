from __future__ import annotations

import logging

import requests

from marketplace.config import notify_backend, notify_timeout_seconds, notify_webhook_url

logger = logging.getLogger(__name__)


def notify_new_lead(*, seller_id: int, seller_email: str, buyer_id: int, buyer_name: str, property_id: int, property_title: str) -> str:
    """
    Tell a seller that a buyer asked for their contact details (best-effort).

    Returns the backend outcome ("console", "webhook", "disabled", "skipped").
    Raises only for webhook transport errors; callers swallow and log.
    """
    backend = notify_backend()
    if backend in {"disabled", "off", "none"}:
        return "disabled"

    payload = {
        "event": "lead.created",
        "seller_id": int(seller_id),
        "seller_email": (seller_email or "").strip(),
        "buyer_id": int(buyer_id),
        "buyer_name": (buyer_name or "").strip() or "Buyer",
        "property_id": int(property_id),
        "property_title": (property_title or "").strip() or "Property",
    }

    if backend == "webhook":
        url = notify_webhook_url()
        if not url:
            logger.warning("NOTIFY_BACKEND=webhook but NOTIFY_WEBHOOK_URL is empty; skipping lead notification")
            return "skipped"
        resp = requests.post(url, json=payload, timeout=notify_timeout_seconds())
        resp.raise_for_status()
        return "webhook"

    # Default safe fallback.
    logger.info("NOTIFY_BACKEND=%s: new lead %s", backend, payload)
    return "console"
