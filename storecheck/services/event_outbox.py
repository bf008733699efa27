"""
StoreCheck
Outbound event log.

Evaluators never talk to email servers or webhooks directly. They call
``publish()`` inside their own unit of work, and ``dispatch_pending()``
delivers the rows afterwards through one handler per channel:

    in_app  → NotificationService   payload: recipient_id, type, title, message, link, metadata
    email   → EmailService.send     payload: to, subject, html_body
    chat    → ChatService.post_card payload: title, facts, summary?, subtitle?, level?

Each event is delivered and committed on its own, so one bad event cannot
undo the delivery of another. Failed events stay retryable until they reach
OUTBOX_MAX_ATTEMPTS.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from storecheck.models import db
from storecheck.models.notification import EVENT_CHANNELS, OutboundEvent
from storecheck.services.chat_service import chat_service
from storecheck.services.email_service import EmailService
from storecheck.services.notification import NotificationService

logger = logging.getLogger(__name__)


def publish(channel, event_type, payload):
    """Append one event to the log. The caller owns the commit."""
    if channel not in EVENT_CHANNELS:
        raise ValueError(f"Unknown event channel: {channel}")
    event = OutboundEvent(channel=channel, event_type=event_type, payload=payload or {})
    db.session.add(event)
    return event


# ── Channel handlers ─────────────────────────────────────────────────────


def _deliver_in_app(event):
    NotificationService.from_event_payload(event.payload)


def _deliver_email(event):
    payload = event.payload
    EmailService.send(
        to_email=payload["to"],
        subject=payload["subject"],
        html_body=payload["html_body"],
        event_id=event.id,
    )


def _deliver_chat(event):
    payload = event.payload
    chat_service.post_card(
        payload["title"],
        payload.get("facts", []),
        summary=payload.get("summary"),
        subtitle=payload.get("subtitle"),
        level=payload.get("level", "warning"),
    )


_HANDLERS = {
    "in_app": _deliver_in_app,
    "email": _deliver_email,
    "chat": _deliver_chat,
}


def dispatch_pending(limit=100):
    """
    Deliver pending and previously failed events below the attempt cap.

    Returns:
        {"delivered": int, "failed": int}
    """
    max_attempts = current_app.config.get("OUTBOX_MAX_ATTEMPTS", 5)
    event_ids = [
        row.id
        for row in (
            OutboundEvent.query
            .filter(OutboundEvent.status.in_(("pending", "failed")))
            .filter(OutboundEvent.attempts < max_attempts)
            .order_by(OutboundEvent.id)
            .limit(limit)
            .with_entities(OutboundEvent.id)
            .all()
        )
    ]

    delivered = failed = 0
    for event_id in event_ids:
        event = db.session.get(OutboundEvent, event_id)
        try:
            _HANDLERS[event.channel](event)
            event.status = "delivered"
            event.attempts = (event.attempts or 0) + 1
            event.last_error = None
            event.delivered_at = datetime.now(timezone.utc)
            db.session.commit()
            delivered += 1
        except Exception as exc:
            db.session.rollback()
            event = db.session.get(OutboundEvent, event_id)
            event.status = "failed"
            event.attempts = (event.attempts or 0) + 1
            event.last_error = str(exc)[:1000]
            db.session.commit()
            failed += 1
            logger.warning(
                "Outbound event %s (%s/%s) failed: %s",
                event_id, event.channel, event.event_type, exc,
            )

    if event_ids:
        logger.info("Outbox dispatch: delivered=%d failed=%d", delivered, failed)
    return {"delivered": delivered, "failed": failed}
