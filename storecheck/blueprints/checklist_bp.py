"""
StoreCheck
Checklist API blueprint.

Endpoint groups:
  Finalize              POST /api/v1/checklists
                        GET  /api/v1/checklists/<id>
  Reconciliation        GET  /api/v1/cross-validations
                        GET  /api/v1/cross-validations/<id>
  Action plans          GET  /api/v1/action-plans
                        POST /api/v1/action-plans/<id>/transition
  Notifications         GET  /api/v1/notifications?recipient_id=
                        POST /api/v1/notifications/<id>/read
  Maintenance jobs      POST /api/v1/jobs/<name>/run
  Health                GET  /api/v1/health

Authentication is handled upstream; ``user_id`` travels in the payload.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from storecheck import limiter
from storecheck.blueprints import paginate_query
from storecheck.core.exceptions import ConflictError, NotFoundError, TransientIOError, ValidationError
from storecheck.models import db
from storecheck.models.action_plan import ACTION_PLAN_STATUSES, ActionPlan
from storecheck.models.checklist import Checklist
from storecheck.models.cross_validation import VALIDATION_STATUSES, CrossValidation
from storecheck.models.notification import Notification
from storecheck.services.action_plan_lifecycle import ActionPlanTransitionError, transition_action_plan
from storecheck.services.checklist_service import finalize_checklist
from storecheck.services.notification import NotificationService
from storecheck.services.scheduler_service import SchedulerService, get_registered_jobs
from storecheck.utils.errors import E, api_error
from storecheck.utils.helpers import get_or_404

logger = logging.getLogger(__name__)

checklist_bp = Blueprint("checklist", __name__, url_prefix="/api/v1")


# ── Error handlers ────────────────────────────────────────────────────────────


@checklist_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@checklist_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@checklist_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error))


@checklist_bp.errorhandler(ActionPlanTransitionError)
def _handle_transition(error: ActionPlanTransitionError):
    return api_error(E.CONFLICT_STATE, str(error))


@checklist_bp.errorhandler(TransientIOError)
def _handle_transient(error: TransientIOError):
    logger.warning("Transient failure in endpoint=%s: %s", request.endpoint, error)
    return api_error(E.UNAVAILABLE, str(error))


@checklist_bp.errorhandler(SQLAlchemyError)
def _handle_database(error: SQLAlchemyError):
    db.session.rollback()
    logger.exception("Database error in endpoint=%s", request.endpoint)
    return api_error(E.DATABASE, "Database error")


def _rate_limit():
    return current_app.config.get("CHECKLIST_RATE_LIMIT", "120/minute")


# ═════════════════════════════════════════════════════════════════════════
# Checklists
# ═════════════════════════════════════════════════════════════════════════


@checklist_bp.route("/checklists", methods=["POST"])
@limiter.limit(_rate_limit)
def create_checklist():
    """Finalize a completed checklist. 201 when new, 200 for a repeated submission."""
    data = request.get_json(silent=True)
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")

    result = finalize_checklist(data)
    checklist = result["checklist"]
    body = {
        "checklist": checklist.to_dict(),
        "created": result["created"],
        "evaluation": result["evaluation"],
    }
    return jsonify(body), 201 if result["created"] else 200


@checklist_bp.route("/checklists/<int:checklist_id>", methods=["GET"])
def get_checklist(checklist_id):
    checklist, err = get_or_404(Checklist, checklist_id)
    if err:
        return err
    return jsonify(checklist.to_dict(include_responses=True))


# ═════════════════════════════════════════════════════════════════════════
# Cross-validations
# ═════════════════════════════════════════════════════════════════════════


@checklist_bp.route("/cross-validations", methods=["GET"])
def list_cross_validations():
    q = CrossValidation.query
    store_id = request.args.get("store_id", type=int)
    if store_id:
        q = q.filter_by(store_id=store_id)
    status = request.args.get("status")
    if status:
        if status not in VALIDATION_STATUSES:
            return api_error(E.VALIDATION_INVALID, f"Invalid status. Must be one of: {sorted(VALIDATION_STATUSES)}")
        q = q.filter_by(status=status)

    items, total = paginate_query(q.order_by(CrossValidation.created_at.desc(), CrossValidation.id.desc()))
    return jsonify({"items": [v.to_dict() for v in items], "total": total})


@checklist_bp.route("/cross-validations/<int:validation_id>", methods=["GET"])
def get_cross_validation(validation_id):
    record, err = get_or_404(CrossValidation, validation_id, label="Cross-validation")
    if err:
        return err
    return jsonify(record.to_dict())


# ═════════════════════════════════════════════════════════════════════════
# Action plans
# ═════════════════════════════════════════════════════════════════════════


@checklist_bp.route("/action-plans", methods=["GET"])
def list_action_plans():
    q = ActionPlan.query
    store_id = request.args.get("store_id", type=int)
    if store_id:
        q = q.filter_by(store_id=store_id)
    assigned_to = request.args.get("assigned_to", type=int)
    if assigned_to:
        q = q.filter_by(assigned_to=assigned_to)
    status = request.args.get("status")
    if status:
        if status not in ACTION_PLAN_STATUSES:
            return api_error(E.VALIDATION_INVALID, f"Invalid status. Must be one of: {sorted(ACTION_PLAN_STATUSES)}")
        q = q.filter_by(status=status)

    items, total = paginate_query(q.order_by(ActionPlan.created_at.desc(), ActionPlan.id.desc()))
    return jsonify({"items": [p.to_dict() for p in items], "total": total})


@checklist_bp.route("/action-plans/<int:plan_id>/transition", methods=["POST"])
def transition_plan(plan_id):
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    user_id = data.get("user_id")
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")

    result = transition_action_plan(
        plan_id, action, user_id,
        text=data.get("text"),
        photos=data.get("photos"),
    )
    db.session.commit()
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════
# Notifications
# ═════════════════════════════════════════════════════════════════════════


@checklist_bp.route("/notifications", methods=["GET"])
def list_notifications():
    recipient_id = request.args.get("recipient_id", type=int)
    if not recipient_id:
        return api_error(E.VALIDATION_REQUIRED, "recipient_id is required")
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)

    items, total = NotificationService.list_for_recipient(
        recipient_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(recipient_id),
    })


@checklist_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id):
    _, err = get_or_404(Notification, notification_id)
    if err:
        return err
    notif = NotificationService.mark_read(notification_id)
    return jsonify(notif.to_dict())


# ═════════════════════════════════════════════════════════════════════════
# Jobs & health
# ═════════════════════════════════════════════════════════════════════════


@checklist_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    result = SchedulerService.run_job(job_name)
    status = 200 if result["status"] == "success" else 500
    return jsonify(result), status


@checklist_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "app": current_app.config.get("APP_NAME", "StoreCheck")})
