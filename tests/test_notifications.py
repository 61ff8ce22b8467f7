from __future__ import annotations

import pytest
import requests

from marketplace.notifications import notify_new_lead

LEAD = dict(
    seller_id=2,
    seller_email=" seller@example.com ",
    buyer_id=42,
    buyer_name="Bea Buyer",
    property_id=7,
    property_title="Sea view flat",
)


def _response(status_code: int) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status_code
    resp.url = "https://hooks.example.com/leads"
    return resp


@pytest.fixture
def posts(monkeypatch):
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return _response(204)

    monkeypatch.setattr(requests, "post", fake_post)
    return calls


def test_disabled_backend_sends_nothing(posts):
    assert notify_new_lead(**LEAD) == "disabled"
    assert posts == []


def test_console_backend_logs_payload(monkeypatch, posts, caplog):
    monkeypatch.setenv("NOTIFY_BACKEND", "console")

    with caplog.at_level("INFO", logger="marketplace.notifications"):
        assert notify_new_lead(**LEAD) == "console"

    assert posts == []
    assert "lead.created" in caplog.text


def test_webhook_posts_lead_payload(monkeypatch, posts):
    monkeypatch.setenv("NOTIFY_BACKEND", "webhook")
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.example.com/leads")
    monkeypatch.setenv("NOTIFY_TIMEOUT_SECONDS", "3")

    assert notify_new_lead(**dict(LEAD, buyer_name="", property_title="  ")) == "webhook"

    assert len(posts) == 1
    url, kwargs = posts[0]
    assert url == "https://hooks.example.com/leads"
    assert kwargs["timeout"] == 3
    assert kwargs["json"] == {
        "event": "lead.created",
        "seller_id": 2,
        "seller_email": "seller@example.com",
        "buyer_id": 42,
        "buyer_name": "Buyer",
        "property_id": 7,
        "property_title": "Property",
    }


def test_webhook_timeout_is_clamped(monkeypatch, posts):
    monkeypatch.setenv("NOTIFY_BACKEND", "webhook")
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.example.com/leads")
    monkeypatch.setenv("NOTIFY_TIMEOUT_SECONDS", "600")

    notify_new_lead(**LEAD)

    assert posts[0][1]["timeout"] == 60


def test_webhook_without_url_is_skipped(monkeypatch, posts):
    monkeypatch.setenv("NOTIFY_BACKEND", "webhook")
    monkeypatch.delenv("NOTIFY_WEBHOOK_URL", raising=False)

    assert notify_new_lead(**LEAD) == "skipped"
    assert posts == []


def test_webhook_error_status_raises(monkeypatch):
    monkeypatch.setenv("NOTIFY_BACKEND", "webhook")
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.example.com/leads")
    monkeypatch.setattr(requests, "post", lambda url, **kwargs: _response(502))

    with pytest.raises(requests.HTTPError):
        notify_new_lead(**LEAD)
