"""
StoreCheck
Notification Service.

Creating, listing and acknowledging in-app notifications. Rows are written
by the outbound event dispatcher (channel ``in_app``); the API only reads
and marks them.
"""

from datetime import datetime, timezone

from storecheck.models import db
from storecheck.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient_id, type, title, message="", link=None, metadata=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (flushed, not committed).
        """
        notif = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title[:300],
            message=message or "",
            link=link,
            metadata_json=metadata or {},
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    @staticmethod
    def from_event_payload(payload):
        """Build a notification from an ``in_app`` outbound event payload."""
        return NotificationService.create(
            recipient_id=payload["recipient_id"],
            type=payload.get("type", "action_plan_assigned"),
            title=payload.get("title", ""),
            message=payload.get("message", ""),
            link=payload.get("link"),
            metadata=payload.get("metadata"),
        )

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(recipient_id=recipient_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient_id):
        """Mark all notifications for a recipient as read."""
        q = Notification.query.filter_by(recipient_id=recipient_id, is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count
