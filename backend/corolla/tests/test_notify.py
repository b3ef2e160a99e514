from datetime import datetime, timezone

import requests

from corolla import notify


def _payload(**overrides):
    values = dict(
        granted_by={"name": "Ops Lead", "email": "ops@example.com"},
        granted_to={"name": "Ada", "email": "ada@example.com"},
        system={"name": "GitHub", "description": None},
        access_tier="Admin",
        instance=None,
        notes=None,
        granted_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return notify.build_access_granted_payload(**values)


def test_payload_message():
    payload = _payload(instance="Production", notes="break-glass")
    assert payload["event"] == "access_granted"
    assert payload["timestamp"] == "2024-05-01T12:00:00+00:00"
    assert payload["message"] == (
        "Ops Lead granted Ada <ada@example.com> Admin access on GitHub (Production)\nNotes: break-glass"
    )


def test_delivery_posts_to_configured_url(monkeypatch):
    sent = {}

    class _Response:
        def raise_for_status(self):
            return None

    def fake_post(url, json, timeout):
        sent.update(url=url, json=json, timeout=timeout)
        return _Response()

    monkeypatch.delenv("TESTING", raising=False)
    monkeypatch.setenv("ACCESS_WEBHOOK_URL", "https://hooks.example.com/grants")
    monkeypatch.setattr(notify.requests, "post", fake_post)

    assert notify.send_access_granted(_payload()) is True
    assert sent["url"] == "https://hooks.example.com/grants"
    assert sent["json"]["granted_to"]["email"] == "ada@example.com"


def test_delivery_failure_is_swallowed(monkeypatch):
    def failing_post(url, json, timeout):
        raise requests.ConnectionError("unreachable")

    monkeypatch.delenv("TESTING", raising=False)
    monkeypatch.setenv("ACCESS_WEBHOOK_URL", "https://hooks.example.com/grants")
    monkeypatch.setattr(notify.requests, "post", failing_post)

    assert notify.send_access_granted(_payload()) is False


def test_no_url_means_no_delivery(monkeypatch):
    monkeypatch.delenv("TESTING", raising=False)
    monkeypatch.delenv("ACCESS_WEBHOOK_URL", raising=False)
    assert notify.send_access_granted(_payload()) is False


def test_testing_mode_uses_outbox(webhook_outbox):
    assert notify.send_access_granted(_payload()) is True
    assert webhook_outbox[0]["access_tier"] == "Admin"
