import logging
import os
from datetime import datetime
from typing import Any

import requests

# purpose: announce newly granted access to the team chat webhook
# status: active

logger = logging.getLogger(__name__)

WEBHOOK_OUTBOX: list[dict[str, Any]] = []


def format_grant_message(payload: dict[str, Any]) -> str:
    instance = payload.get("instance")
    scope = f"{payload['system']['name']} ({instance})" if instance else payload["system"]["name"]
    message = (
        f"{payload['granted_by']['name']} granted {payload['granted_to']['name']} "
        f"<{payload['granted_to']['email']}> {payload['access_tier']} access on {scope}"
    )
    if payload.get("notes"):
        message += f"\nNotes: {payload['notes']}"
    return message


def build_access_granted_payload(
    *,
    granted_by: dict[str, str],
    granted_to: dict[str, str],
    system: dict[str, str | None],
    access_tier: str,
    instance: str | None,
    notes: str | None,
    granted_at: datetime,
) -> dict[str, Any]:
    payload = {
        "event": "access_granted",
        "timestamp": granted_at.isoformat(),
        "granted_by": granted_by,
        "granted_to": granted_to,
        "system": system,
        "access_tier": access_tier,
        "instance": instance,
        "notes": notes or None,
    }
    payload["message"] = format_grant_message(payload)
    return payload


def send_access_granted(payload: dict[str, Any]) -> bool:
    """Post the payload to the webhook; failures are logged, never raised."""

    if os.getenv("TESTING") == "1":
        WEBHOOK_OUTBOX.append(payload)
        return True
    url = os.getenv("ACCESS_WEBHOOK_URL")
    if not url:
        return False
    try:
        response = requests.post(url, json=payload, timeout=10)
        response.raise_for_status()
    except requests.RequestException:
        logger.exception("Access grant webhook delivery failed")
        return False
    return True
