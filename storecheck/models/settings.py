"""
StoreCheck
Runtime key/value settings editable by administrators.
"""

from datetime import datetime, timezone

from storecheck.models import db


class AppSetting(db.Model):
    """Single configuration entry (validation TTL, email template, ...)."""

    __tablename__ = "app_settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), nullable=False, unique=True)
    value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {"key": self.key, "value": self.value}

    def __repr__(self):
        return f"<AppSetting {self.key}>"
