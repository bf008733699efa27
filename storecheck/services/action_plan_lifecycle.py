"""
StoreCheck
Action Plan Lifecycle Service.

Manages action plan status transitions with:
  - Transition validation
  - Completion requirements from the originating FieldCondition
    (text required, photo required, max text length) on resolve
  - Activity log

4 valid transitions:
  start_progress, resolve, cancel, reopen

Usage:
    from storecheck.services.action_plan_lifecycle import transition_action_plan

    result = transition_action_plan(
        plan_id=12,
        action="resolve",
        user_id=3,
        text="Freezer door replaced",
        photos=["https://.../after.jpg"],
    )

The caller owns the commit.
"""

import logging
from datetime import datetime, timezone

from storecheck.core.exceptions import NotFoundError
from storecheck.models import db
from storecheck.models.action_plan import ActionPlan
from storecheck.models.checklist import ActivityLog

logger = logging.getLogger(__name__)


ACTION_PLAN_TRANSITIONS = {
    "start_progress": {"from": ["open", "overdue"], "to": "in_progress"},
    "resolve": {"from": ["open", "in_progress", "overdue"], "to": "resolved"},
    "cancel": {"from": ["open", "in_progress", "overdue"], "to": "cancelled"},
    "reopen": {"from": ["resolved", "cancelled"], "to": "open"},
}


class ActionPlanTransitionError(Exception):
    """Raised when an action plan transition is invalid."""

    def __init__(self, plan_id: int, action: str, current: str, reason: str | None = None):
        msg = f"Cannot '{action}' action plan {plan_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.plan_id = plan_id
        self.action = action
        self.current_status = current
        self.reason = reason


def validate_transition(plan: ActionPlan, action: str) -> dict:
    """Validate whether an action is valid for the current plan state."""
    rule = ACTION_PLAN_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": plan.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if plan.status not in rule["from"]:
        return {"valid": False, "from": plan.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{plan.status}'"}

    return {"valid": True, "from": plan.status, "to": rule["to"], "reason": None}


def _check_completion_requirements(plan: ActionPlan, text: str | None, photos: list | None) -> str | None:
    condition = plan.condition
    if condition is None:
        return None
    text = (text or "").strip()
    if condition.require_text_on_completion and not text:
        return "resolution text is required"
    if condition.require_photo_on_completion and not photos:
        return "at least one photo is required"
    max_chars = condition.completion_max_chars
    if max_chars and len(text) > max_chars:
        return f"resolution text exceeds {max_chars} characters"
    return None


def _add_activity_log(plan: ActionPlan, user_id: int, action: str, details: dict) -> None:
    db.session.add(ActivityLog(
        user_id=user_id,
        store_id=plan.store_id,
        checklist_id=plan.checklist_id,
        action=f"action_plan.{action}",
        details={"action_plan_id": plan.id, **details},
    ))


def transition_action_plan(
    plan_id: int,
    action: str,
    user_id: int,
    *,
    text: str | None = None,
    photos: list | None = None,
) -> dict:
    """
    Execute an action plan lifecycle transition.

    Returns:
        {"action_plan_id", "previous_status", "new_status", "action"}

    Raises:
        NotFoundError, ActionPlanTransitionError
    """
    plan = db.session.get(ActionPlan, plan_id)
    if not plan:
        raise NotFoundError(resource="ActionPlan", resource_id=plan_id)

    validation = validate_transition(plan, action)
    if not validation["valid"]:
        raise ActionPlanTransitionError(plan.id, action, plan.status, validation["reason"])

    if action == "resolve":
        problem = _check_completion_requirements(plan, text, photos)
        if problem:
            raise ActionPlanTransitionError(plan.id, action, plan.status, problem)

    previous_status = plan.status
    plan.status = validation["to"]
    plan.updated_at = datetime.now(timezone.utc)

    if action == "resolve":
        plan.resolution_text = (text or "").strip() or None
        plan.resolution_photos = list(photos) if photos else None
        plan.resolved_at = datetime.now(timezone.utc)
    elif action == "reopen":
        plan.resolution_text = None
        plan.resolution_photos = None
        plan.resolved_at = None

    _add_activity_log(plan, user_id, action, {"from": previous_status, "to": plan.status})
    logger.info("Action plan %s: %s → %s", plan.id, previous_status, plan.status)

    return {
        "action_plan_id": plan.id,
        "previous_status": previous_status,
        "new_status": plan.status,
        "action": action,
    }
