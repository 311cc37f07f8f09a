# portal/services/notify.py
import os
from threading import RLock
from typing import Optional

import requests
import structlog

from portal.schemas.activity import ActionType
from portal.schemas.deliverable import DeliverableStatus
from portal.services.activity import WorkflowEvent

logger = structlog.get_logger(__name__)

APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/")

# statuses that someone on the other side of the portal has to act on
NOTIFY_STATUSES = {
    DeliverableStatus.APPROVED.value,
    DeliverableStatus.IN_REVIEW.value,
    DeliverableStatus.REJECTED.value,
}

_lock = RLock()
_state = {
    # seeded from the environment; POST /config/slack-webhook overrides it
    "webhook_url": os.getenv("SLACK_WEBHOOK_URL", "").strip(),
}


def set_webhook_url(url: Optional[str]) -> None:
    with _lock:
        _state["webhook_url"] = (url or "").strip()

def get_webhook_url() -> str:
    with _lock:
        return _state.get("webhook_url", "")


def _slack_send(payload: dict) -> bool:
    """POST to the webhook; never raises. Returns whether the send was accepted."""
    url = get_webhook_url()
    if not url:
        logger.debug("webhook_not_set")
        return False
    if "text" not in payload:
        payload = {**payload, "text": payload.get("fallback", "Delivery portal notification")}
    try:
        r = requests.post(url, json=payload, timeout=10)
    except requests.RequestException as e:
        logger.warning("webhook_send_failed", error=str(e))
        return False
    if r.status_code >= 300:
        logger.warning("webhook_rejected", status=r.status_code, body=r.text[:300])
        return False
    logger.info("webhook_sent", status=r.status_code)
    return True


def notify_status_change(event: WorkflowEvent) -> None:
    """Post-commit hook: tell the channel when a deliverable needs attention."""
    if event.action_type != ActionType.APPROVAL:
        return
    new_status = event.metadata.get("newStatus")
    if new_status not in NOTIFY_STATUSES:
        return
    # a repeated verdict leaves the deliverable where it was
    if event.metadata.get("previousStatus") == new_status:
        return

    link = f"{APP_BASE_URL}/api/deliverables/{event.deliverable_id}"
    _slack_send({
        "fallback": f"Deliverable {event.deliverable_id} is now {new_status}",
        "blocks": [
            {"type": "section", "text": {"type": "mrkdwn",
                "text": f"*Deliverable {new_status}*\n{event.message}"}},
            {"type": "context", "elements": [
                {"type": "mrkdwn", "text": f"by {event.actor.name} ({event.actor.log_role})"},
                {"type": "mrkdwn", "text": f"<{link}|Open deliverable>"},
            ]},
        ],
    })
