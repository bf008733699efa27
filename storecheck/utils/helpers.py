"""Shared utility functions.

get_or_404:  tuple-return lookup used by the blueprints
utcnow:      timezone-aware "now"
as_utc:      re-attach UTC to datetimes read back from SQLite (which drops tzinfo)
minutes_between: absolute gap between two instants, in minutes
"""
import logging
from datetime import datetime, timezone

from flask import jsonify

from storecheck.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (jsonify_response, 404))

        obj, err = get_or_404(ActionPlan, plan_id)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found", "code": "ERR_NOT_FOUND"}), 404)
    return obj, None


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minutes_between(a, b):
    return abs((as_utc(a) - as_utc(b)).total_seconds()) / 60.0
