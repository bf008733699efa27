"""
StoreCheck
Settings Service.

Key/value lookup over app_settings with documented fallbacks. Missing or
malformed values are never surfaced to users: the default is returned and a
debug line is logged.

Known keys:
    validation_expiration_minutes   pending reconciliation TTL (default 60)
    action_plan_email_template      HTML body with {{placeholders}}
    action_plan_email_subject       subject line with {{placeholders}}
"""

import logging

from flask import current_app

from storecheck.models import db
from storecheck.models.settings import AppSetting

logger = logging.getLogger(__name__)

VALIDATION_EXPIRATION_KEY = "validation_expiration_minutes"
EMAIL_TEMPLATE_KEY = "action_plan_email_template"
EMAIL_SUBJECT_KEY = "action_plan_email_subject"


class SettingsService:
    """Stateless accessor for runtime settings."""

    @staticmethod
    def get(key, default=None):
        row = AppSetting.query.filter_by(key=key).first()
        if row is None or row.value in (None, ""):
            return default
        return row.value

    @staticmethod
    def get_positive_int(key, default):
        raw = SettingsService.get(key)
        if raw is None:
            return default
        try:
            value = int(raw)
        except (TypeError, ValueError):
            logger.debug("Setting %s=%r is not an integer, using %s", key, raw, default)
            return default
        return value if value > 0 else default

    @staticmethod
    def set(key, value):
        row = AppSetting.query.filter_by(key=key).first()
        if row is None:
            row = AppSetting(key=key)
            db.session.add(row)
        row.value = None if value is None else str(value)
        db.session.flush()
        return row

    # ── Typed accessors ──────────────────────────────────────────────────

    @classmethod
    def validation_expiration_minutes(cls):
        default = current_app.config.get("VALIDATION_EXPIRATION_MINUTES", 60)
        return cls.get_positive_int(VALIDATION_EXPIRATION_KEY, default)

    @classmethod
    def email_template(cls):
        return cls.get(EMAIL_TEMPLATE_KEY)

    @classmethod
    def email_subject(cls):
        return cls.get(EMAIL_SUBJECT_KEY)
