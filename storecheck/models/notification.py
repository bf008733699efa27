"""
StoreCheck
Notification models.

Models:
    - OutboundEvent: outbound event log the evaluators publish to
    - Notification: in-app notification record with read tracking
    - EmailLog: outbound email audit trail
"""

from datetime import datetime, timezone

from storecheck.models import db


# ── Constants ────────────────────────────────────────────────────────────────

EVENT_CHANNELS = {"in_app", "email", "chat"}
EVENT_STATUSES = {"pending", "delivered", "failed"}
EMAIL_STATUSES = {"queued", "sent", "failed"}

NOTIFICATION_TYPES = {
    "action_plan_assigned",
    "reincidencia_detected",
    "action_plan_overdue",
    "cross_validation_mismatch",
    "cross_validation_siblings",
    "cross_validation_expired",
}


class OutboundEvent(db.Model):
    """
    One message waiting for (or done with) delivery.

    Evaluators append rows inside their own unit of work; the dispatcher
    delivers them later, so a delivery failure never touches the operation
    that produced the event.
    """

    __tablename__ = "outbound_events"

    id = db.Column(db.Integer, primary_key=True)
    channel = db.Column(db.String(20), nullable=False, index=True)
    event_type = db.Column(db.String(50), nullable=False, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(20), default="pending", nullable=False, index=True)
    attempts = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "channel": self.channel,
            "event_type": self.event_type,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
        }

    def __repr__(self):
        return f"<OutboundEvent {self.id}: {self.channel}/{self.event_type} [{self.status}]>"


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = db.Column(db.String(50), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    link = db.Column(db.String(500), nullable=True)
    metadata_json = db.Column("metadata", db.JSON, default=dict)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "metadata": self.metadata_json or {},
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"


class EmailLog(db.Model):
    """
    Outbound email audit log.

    Every email sent through the platform is logged here for audit/debug.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    subject = db.Column(db.String(500), nullable=False)
    status = db.Column(db.String(20), default="queued")
    error_message = db.Column(db.Text, nullable=True)
    event_id = db.Column(db.Integer, nullable=True, comment="Originating OutboundEvent id")

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "subject": self.subject,
            "status": self.status,
            "error_message": self.error_message,
            "event_id": self.event_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<EmailLog {self.id}: {self.recipient_email} [{self.status}]>"
