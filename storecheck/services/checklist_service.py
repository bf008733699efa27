"""
StoreCheck
Checklist finalize service.

``finalize_checklist`` is the single server-side entry point for a completed
checklist, whether it comes straight from the form or from the device queue:

    1. create-if-absent by client_submission_id
    2. insert responses + activity log, commit
    3. unless already evaluated: reconciliation, then non-conformity rules
       (each isolated from the other), stamp evaluated_at
    4. deliver pending outbound events

A retried sync finds the existing checklist and, once evaluated_at is set,
does nothing else.
"""

import logging
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from storecheck.core.exceptions import NotFoundError, ValidationError
from storecheck.core.field_values import FieldResponse, build_field_response
from storecheck.models import db
from storecheck.models.checklist import ActivityLog, Checklist, ChecklistResponse, ChecklistTemplate
from storecheck.models.store import Store, User
from storecheck.services import event_outbox
from storecheck.services.nonconformity import process_non_conformities
from storecheck.services.reconciliation import process_cross_validation, resolve_sector
from storecheck.utils.helpers import utcnow

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("template_id", "store_id", "user_id")


def _parse_timestamp(raw):
    if not raw:
        return None
    if isinstance(raw, datetime):
        return raw
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"Invalid timestamp: {raw}", details={"timestamp": str(raw)}) from exc


def _normalize_responses(items, fields_by_id):
    """Turn the payload's response list into FieldResponse objects."""
    normalized = {}
    unknown = []
    for item in items or []:
        try:
            field_id = int(item["field_id"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("Each response needs a numeric field_id",
                                  details={"response": item}) from None
        field = fields_by_id.get(field_id)
        if field is None:
            unknown.append(field_id)
            continue
        if "value" in item:
            response = build_field_response(field_id, field.field_type, item["value"])
        else:
            response = FieldResponse.from_dict(item)
        if response is not None:
            normalized[field_id] = response
    if unknown:
        raise ValidationError("Responses reference fields outside the template",
                              details={"field_ids": unknown})
    return list(normalized.values())


def _validate(payload):
    if not isinstance(payload, dict):
        raise ValidationError("Payload must be a JSON object")
    missing = [k for k in REQUIRED_KEYS if payload.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}",
                              details={k: "required" for k in missing})

    template = db.session.get(ChecklistTemplate, payload["template_id"])
    if template is None:
        raise NotFoundError(resource="ChecklistTemplate", resource_id=payload["template_id"])
    if db.session.get(Store, payload["store_id"]) is None:
        raise NotFoundError(resource="Store", resource_id=payload["store_id"])
    if db.session.get(User, payload["user_id"]) is None:
        raise NotFoundError(resource="User", resource_id=payload["user_id"])
    return template


def _create_checklist(payload, template):
    fields_by_id = {f.id: f for f in template.fields}
    responses = _normalize_responses(payload.get("responses"), fields_by_id)
    now = utcnow()

    checklist = Checklist(
        template_id=template.id,
        store_id=payload["store_id"],
        sector_id=payload.get("sector_id"),
        created_by=payload["user_id"],
        status="completed",
        client_submission_id=payload.get("client_submission_id"),
        started_at=_parse_timestamp(payload.get("started_at")),
        completed_at=_parse_timestamp(payload.get("completed_at")) or now,
    )
    db.session.add(checklist)
    db.session.flush()

    for r in responses:
        db.session.add(ChecklistResponse(
            checklist_id=checklist.id,
            field_id=r.field_id,
            value_text=r.value_text,
            value_number=r.value_number,
            value_json=r.value_json,
            answered_by=payload["user_id"],
        ))

    db.session.add(ActivityLog(
        user_id=payload["user_id"],
        store_id=payload["store_id"],
        checklist_id=checklist.id,
        action="checklist_synced" if payload.get("source") == "offline" else "checklist_completed",
        details={"template_id": template.id, "responses": len(responses)},
    ))
    return checklist


def run_evaluations(checklist):
    """Run both evaluators once for ``checklist``. Each failure is contained."""
    template = checklist.template
    fields = list(template.fields)
    responses = list(checklist.responses)
    sector_id = checklist.sector_id or resolve_sector(checklist.created_by, checklist.store_id)
    results = {}

    try:
        results["reconciliation"] = process_cross_validation(
            checklist.id, checklist.template_id, checklist.store_id, checklist.created_by,
            responses, fields,
        )
    except Exception as exc:
        db.session.rollback()
        logger.exception("Reconciliation crashed for checklist %s", checklist.id,
                         extra={"checklist_id": checklist.id})
        results["reconciliation"] = {"success": False, "error": str(exc)}

    try:
        results["non_conformity"] = process_non_conformities(
            checklist.id, checklist.template_id, checklist.store_id, sector_id,
            checklist.created_by, responses, fields,
        )
    except Exception as exc:
        db.session.rollback()
        logger.exception("Non-conformity evaluation crashed for checklist %s", checklist.id,
                         extra={"checklist_id": checklist.id})
        results["non_conformity"] = {"success": False, "plans_created": 0, "errors": [str(exc)]}

    checklist.evaluated_at = utcnow()
    db.session.commit()
    return results


def finalize_checklist(payload):
    """
    Persist a completed checklist and evaluate it once.

    Returns:
        {"checklist": Checklist, "created": bool, "evaluation": dict | None}

    Raises:
        ValidationError, NotFoundError
    """
    template = _validate(payload)
    submission_id = payload.get("client_submission_id") or None

    checklist = None
    if submission_id:
        checklist = Checklist.query.filter_by(client_submission_id=submission_id).first()

    created = False
    if checklist is None:
        try:
            checklist = _create_checklist(payload, template)
            db.session.commit()
            created = True
        except IntegrityError:
            db.session.rollback()
            checklist = (
                Checklist.query.filter_by(client_submission_id=submission_id).first()
                if submission_id else None
            )
            if checklist is None:
                raise
            logger.info("Concurrent finalize for submission %s resolved to checklist %s",
                        submission_id, checklist.id)
        else:
            logger.info("Checklist %s finalized (submission=%s)", checklist.id, submission_id,
                        extra={"checklist_id": checklist.id, "store_id": checklist.store_id})
    else:
        logger.info("Duplicate finalize for submission %s → checklist %s", submission_id, checklist.id)

    evaluation = None
    if checklist.evaluated_at is None:
        evaluation = run_evaluations(checklist)

    if current_app.config.get("OUTBOX_DISPATCH_ON_FINALIZE", True):
        try:
            event_outbox.dispatch_pending()
        except Exception:
            db.session.rollback()
            logger.exception("Outbox dispatch after finalize failed")

    return {"checklist": checklist, "created": created, "evaluation": evaluation}
