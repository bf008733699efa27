"""
StoreCheck
Non-conformity rule evaluator.

Called once per completed checklist, independently of the reconciliation
matcher.

Pipeline:
    1. load the active FieldConditions of the template's fields
    2. evaluate every response against its conditions
    3. for each non-conformity:
        a. check reincidence (same field + store + template in the lookback window)
        b. create the ActionPlan
        c. publish the in-app notification for the assignee
        d. publish the email (configurable template) and the chat card
        e. on reincidence, publish in-app notifications for the admins

A failing condition is rolled back and logged; the remaining conditions are
still evaluated.
"""

import logging
from datetime import date, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from storecheck.core.exceptions import DataIntegrityGap
from storecheck.core.field_values import display_value, read_selected, read_text, read_yes_no
from storecheck.models import db
from storecheck.models.action_plan import (
    CONDITION_TYPES, OPEN_STATUSES, SEVERITIES, ActionPlan, FieldCondition,
)
from storecheck.models.checklist import Checklist, ChecklistResponse, ChecklistTemplate
from storecheck.models.store import Sector, Store, User
from storecheck.services import event_outbox
from storecheck.services.email_service import SEVERITY_COLORS, build_email_from_template
from storecheck.services.settings_service import SettingsService
from storecheck.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

ESCALATION_THRESHOLD = 2


# ═══════════════════════════════════════════════════════════════════════════
#  Rule evaluation
# ═══════════════════════════════════════════════════════════════════════════


def _bound(cond_value, key):
    raw = (cond_value or {}).get(key)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def evaluate_condition(field, response, condition):
    """Return True when ``response`` breaks ``condition`` for this field type."""
    ctype = condition.condition_type
    cond_value = condition.condition_value or {}
    if not isinstance(cond_value, dict):
        raise DataIntegrityGap("condition_value must be a mapping")
    if ctype not in CONDITION_TYPES:
        raise DataIntegrityGap(f"unknown condition type {ctype!r}")
    ftype = field.field_type

    if ftype == "yes_no":
        answer = read_yes_no(response)
        if not answer:
            return ctype == "empty"
        if ctype == "equals":
            return answer == cond_value.get("value")
        if ctype == "not_equals":
            return answer != cond_value.get("value")
        return False

    if ftype == "number":
        number = response.value_number
        if number is None:
            return ctype == "empty"
        low, high = _bound(cond_value, "min"), _bound(cond_value, "max")
        if ctype == "less_than":
            return low is not None and number < low
        if ctype == "greater_than":
            return high is not None and number > high
        if ctype == "between":
            return (low is not None and number < low) or (high is not None and number > high)
        return False

    if ftype == "rating":
        rating = response.value_number
        if rating is None:
            return ctype == "empty"
        threshold = _bound(cond_value, "threshold")
        if ctype == "less_than":
            return threshold is not None and rating < threshold
        return False

    if ftype == "dropdown":
        selected = read_text(response)
        targets = [str(v) for v in cond_value.get("values") or []]
        if ctype == "in_list":
            return selected in targets
        if ctype == "not_in_list":
            return selected not in targets
        if ctype == "empty":
            return selected.strip() == ""
        return False

    if ftype == "checkbox_multiple":
        selected = read_selected(response)
        required = cond_value.get("required") or []
        forbidden = cond_value.get("forbidden") or []
        if any(item not in selected for item in required):
            return True
        return any(item in selected for item in forbidden)

    if ftype == "text":
        text = read_text(response)
        if ctype == "empty":
            return text.strip() == ""
        if ctype == "equals":
            return text == cond_value.get("value")
        if ctype == "not_equals":
            return text != cond_value.get("value")
        return False

    return False


def escalate_severity(severity):
    """One tier up, capped at the highest tier."""
    if severity not in SEVERITIES:
        return severity
    return SEVERITIES[min(SEVERITIES.index(severity) + 1, len(SEVERITIES) - 1)]


def check_reincidence(field_id, store_id, template_id, *, now=None):
    """
    Count prior plans for (field, store, template) inside the lookback window.

    Returns:
        {"is_reincidencia": bool, "count": int, "parent_id": int | None}
        ``parent_id`` is the oldest prior plan in the window.
    """
    now = now or utcnow()
    lookback = current_app.config.get("REINCIDENCE_LOOKBACK_DAYS", 90)
    prior = (
        ActionPlan.query
        .filter(
            ActionPlan.field_id == field_id,
            ActionPlan.store_id == store_id,
            ActionPlan.template_id == template_id,
            ActionPlan.created_at >= now - timedelta(days=lookback),
        )
        .order_by(ActionPlan.created_at.asc(), ActionPlan.id.asc())
        .all()
    )
    return {
        "is_reincidencia": bool(prior),
        "count": len(prior),
        "parent_id": prior[0].id if prior else None,
    }


def render_title(condition, field, value, store_name):
    if condition.description_template:
        return (
            condition.description_template
            .replace("{field_name}", field.name)
            .replace("{value}", value)
            .replace("{store_name}", store_name)
        )
    return f"Nao conformidade: {field.name} - {store_name}"


# ═══════════════════════════════════════════════════════════════════════════
#  Context + fan-out
# ═══════════════════════════════════════════════════════════════════════════


def _load_context(checklist_id, template_id, store_id, sector_id, user_id):
    store = db.session.get(Store, store_id)
    template = db.session.get(ChecklistTemplate, template_id)
    sector = db.session.get(Sector, sector_id) if sector_id else None
    respondent = db.session.get(User, user_id) if user_id else None
    checklist = db.session.get(Checklist, checklist_id)
    submitted = None
    if checklist is not None:
        submitted = checklist.completed_at or checklist.created_at
    return {
        "store_name": store.name if store else f"Loja #{store_id}",
        "template_name": template.name if template else f"Template #{template_id}",
        "sector_name": sector.name if sector else "",
        "respondent_name": respondent.full_name if respondent else "Usuario",
        "respondent_time": as_utc(submitted or utcnow()).strftime("%d/%m/%Y %H:%M"),
        "email_template": SettingsService.email_template(),
        "email_subject": SettingsService.email_subject(),
        "app_url": current_app.config.get("APP_URL", "").rstrip("/"),
        "app_name": current_app.config.get("APP_NAME", "StoreCheck"),
    }


def _publish_plan_events(plan, field, ctx, reincidence):
    occurrence = reincidence["count"] + 1
    deadline = plan.deadline.strftime("%d/%m/%Y")
    link = f"/admin/planos-de-acao/{plan.id}"
    is_reinc = reincidence["is_reincidencia"]

    event_outbox.publish("in_app", "action_plan.assigned", {
        "recipient_id": plan.assigned_to,
        "type": "reincidencia_detected" if is_reinc else "action_plan_assigned",
        "title": f"Reincidencia #{occurrence}: {field.name}" if is_reinc else f"Novo plano de acao: {field.name}",
        "message": f"{ctx['store_name']} - Prazo: {deadline}",
        "link": link,
        "metadata": {
            "action_plan_id": plan.id,
            "store_id": plan.store_id,
            "severity": plan.severity,
            "is_reincidencia": is_reinc,
        },
    })

    assignee = db.session.get(User, plan.assigned_to) if plan.assigned_to else None
    assignee_name = assignee.full_name if assignee else "Nao atribuido"

    if assignee is not None and assignee.email:
        variables = {
            "plan_title": plan.title,
            "field_name": field.name,
            "store_name": ctx["store_name"],
            "sector_name": ctx["sector_name"],
            "template_name": ctx["template_name"],
            "respondent_name": ctx["respondent_name"],
            "respondent_time": ctx["respondent_time"],
            "assignee_name": assignee_name,
            "severity": plan.severity,
            "severity_label": plan.severity.capitalize(),
            "severity_color": SEVERITY_COLORS.get(plan.severity, "#f59e0b"),
            "deadline": deadline,
            "non_conformity_value": plan.non_conformity_value or "",
            "description": plan.description or "",
            "plan_url": f"{ctx['app_url']}{link}",
            "plan_id": str(plan.id),
            "is_reincidencia": "Sim" if is_reinc else "Nao",
            "reincidencia_count": str(reincidence["count"]),
            "reincidencia_prefix": f"REINCIDENCIA #{occurrence} - " if is_reinc else "",
            "app_name": ctx["app_name"],
        }
        subject, html_body = build_email_from_template(ctx["email_template"], ctx["email_subject"], variables)
        event_outbox.publish("email", "action_plan.assigned", {
            "to": assignee.email,
            "subject": subject,
            "html_body": html_body,
        })

    facts = [
        {"name": "Campo", "value": field.name},
        {"name": "Loja", "value": ctx["store_name"]},
        {"name": "Valor", "value": plan.non_conformity_value or "-"},
        {"name": "Severidade", "value": plan.severity.capitalize()},
        {"name": "Responsavel", "value": assignee_name},
        {"name": "Prazo", "value": deadline},
    ]
    if is_reinc:
        facts.append({"name": "Reincidencia", "value": f"#{occurrence}"})
    event_outbox.publish("chat", "action_plan.created", {
        "title": plan.title,
        "facts": facts,
        "level": "error" if plan.severity in ("alta", "critica") else "warning",
    })

    if is_reinc:
        lookback = current_app.config.get("REINCIDENCE_LOOKBACK_DAYS", 90)
        for admin in _active_admins():
            if admin.id == plan.assigned_to:
                continue
            event_outbox.publish("in_app", "action_plan.reincidence", {
                "recipient_id": admin.id,
                "type": "reincidencia_detected",
                "title": f"Reincidencia #{occurrence}: {field.name}",
                "message": (
                    f"{ctx['store_name']} - {plan.non_conformity_value or '-'} - "
                    f"Ocorrencia {occurrence}x nos ultimos {lookback} dias"
                ),
                "link": link,
                "metadata": {
                    "action_plan_id": plan.id,
                    "store_id": plan.store_id,
                    "severity": plan.severity,
                    "reincidencia_count": occurrence,
                },
            })


def _active_admins():
    return User.query.filter_by(is_admin=True, is_active=True).order_by(User.id).all()


# ═══════════════════════════════════════════════════════════════════════════
#  Entry points
# ═══════════════════════════════════════════════════════════════════════════


def process_non_conformities(
    checklist_id, template_id, store_id, sector_id, user_id, responses, fields,
    *, today=None, now=None,
):
    """
    Evaluate every active condition and open action plans for breaches.

    Returns:
        {"success": bool, "plans_created": int, "errors": [str]}
    """
    today = today or date.today()
    now = now or utcnow()
    fields_by_id = {f.id: f for f in fields}
    if not fields_by_id:
        return {"success": True, "plans_created": 0, "errors": []}

    try:
        conditions = (
            FieldCondition.query
            .filter(FieldCondition.field_id.in_(list(fields_by_id)), FieldCondition.is_active.is_(True))
            .order_by(FieldCondition.id)
            .all()
        )
        if not conditions:
            return {"success": True, "plans_created": 0, "errors": []}
        ctx = _load_context(checklist_id, template_id, store_id, sector_id, user_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Could not load conditions for checklist %s", checklist_id)
        return {"success": False, "plans_created": 0, "errors": [str(exc)]}

    responses_by_field = {r.field_id: r for r in responses}
    created = 0
    errors = []

    for condition in conditions:
        try:
            plan = _evaluate_one(
                condition, fields_by_id, responses_by_field, ctx,
                checklist_id, template_id, store_id, sector_id, user_id, today, now,
            )
        except DataIntegrityGap as exc:
            logger.debug("Condition %s skipped: %s", condition.id, exc)
            continue
        except SQLAlchemyError as exc:
            db.session.rollback()
            errors.append(str(exc))
            logger.exception("Condition %s failed for checklist %s", condition.id, checklist_id,
                             extra={"checklist_id": checklist_id, "store_id": store_id})
            continue
        except Exception as exc:
            db.session.rollback()
            errors.append(f"{type(exc).__name__}: {exc}")
            logger.exception("Condition %s crashed for checklist %s", condition.id, checklist_id,
                             extra={"checklist_id": checklist_id, "store_id": store_id})
            continue
        if plan is not None:
            created += 1

    logger.info("%d action plan(s) created for checklist %s", created, checklist_id,
                extra={"checklist_id": checklist_id})
    return {"success": not errors, "plans_created": created, "errors": errors}


def _evaluate_one(condition, fields_by_id, responses_by_field, ctx,
                  checklist_id, template_id, store_id, sector_id, user_id, today, now):
    field = fields_by_id.get(condition.field_id)
    if field is None:
        raise DataIntegrityGap(f"field {condition.field_id} not in template")
    response = responses_by_field.get(condition.field_id)
    if response is None:
        raise DataIntegrityGap(f"no response for field {condition.field_id}")

    if not evaluate_condition(field, response, condition):
        return None

    reincidence = check_reincidence(field.id, store_id, template_id, now=now)
    severity = condition.severity or "media"
    if reincidence["count"] >= ESCALATION_THRESHOLD:
        severity = escalate_severity(severity)

    value = display_value(field.field_type, response)
    response_row = ChecklistResponse.query.filter_by(checklist_id=checklist_id, field_id=field.id).first()

    plan = ActionPlan(
        checklist_id=checklist_id,
        field_id=field.id,
        field_condition_id=condition.id,
        response_id=response_row.id if response_row else None,
        template_id=template_id,
        store_id=store_id,
        sector_id=sector_id,
        title=render_title(condition, field, value, ctx["store_name"])[:500],
        description=condition.description_template,
        severity=severity,
        status="open",
        assigned_to=condition.default_assignee_id or user_id,
        assigned_by=user_id,
        created_by=user_id,
        deadline=today + timedelta(days=condition.deadline_days or 0),
        is_reincidencia=reincidence["is_reincidencia"],
        reincidencia_count=reincidence["count"],
        parent_action_plan_id=reincidence["parent_id"],
        non_conformity_value=value,
        created_at=now,
    )
    db.session.add(plan)
    db.session.flush()

    _publish_plan_events(plan, field, ctx, reincidence)
    db.session.commit()
    logger.info("Action plan %s opened: field=%s severity=%s reincidencia=%s",
                plan.id, field.name, severity, reincidence["count"])
    return plan


def check_overdue_plans(today=None):
    """Flip open/in-progress plans past their deadline to overdue. Returns the count."""
    today = today or date.today()
    overdue = (
        ActionPlan.query
        .filter(ActionPlan.deadline < today, ActionPlan.status.in_(OPEN_STATUSES))
        .order_by(ActionPlan.id)
        .all()
    )
    if not overdue:
        return 0

    admins = _active_admins()
    for plan in overdue:
        plan.status = "overdue"
        payload = {
            "type": "action_plan_overdue",
            "title": "Plano de acao vencido",
            "message": f'O plano "{plan.title}" venceu em {plan.deadline.strftime("%d/%m/%Y")}',
            "link": f"/admin/planos-de-acao/{plan.id}",
            "metadata": {"action_plan_id": plan.id},
        }
        recipients = [plan.assigned_to] if plan.assigned_to else []
        recipients += [a.id for a in admins if a.id != plan.assigned_to]
        for recipient_id in recipients:
            event_outbox.publish("in_app", "action_plan.overdue", {**payload, "recipient_id": recipient_id})

    db.session.commit()
    logger.info("%d action plan(s) marked overdue", len(overdue))
    return len(overdue)
