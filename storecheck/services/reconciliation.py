"""
StoreCheck
Reconciliation matcher (validacao cruzada).

Two roles count the same invoice independently: the secondary role is the
one whose job function contains SECONDARY_ROLE_KEYWORD ("aprendiz" by
default), every other function is primary. Each completed checklist fills its
role's leg on a CrossValidation row keyed by (store, document number).

Flow per completed checklist:
    1. find the document-number / declared-value fields
    2. resolve the submitter's role and sector
    3. exact match on (store, document number) → fill leg, compare values
    4. otherwise look for a pending "sibling" row created shortly before
    5. otherwise open a new pending row
    6. expire pending rows older than the TTL

Usage:
    from storecheck.services.reconciliation import process_cross_validation

    result = process_cross_validation(
        checklist_id=10, template_id=1, store_id=3, user_id=7,
        responses=checklist.responses, fields=template.fields,
    )
"""

import logging
import re
from datetime import timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from storecheck.core.exceptions import ConfigurationMissing
from storecheck.core.field_values import read_decimal, read_document_number
from storecheck.models import db
from storecheck.models.cross_validation import CrossValidation
from storecheck.models.store import Sector, Store, User, UserStore
from storecheck.services import event_outbox
from storecheck.services.settings_service import SettingsService
from storecheck.utils.helpers import as_utc, minutes_between, utcnow

logger = logging.getLogger(__name__)

DOCUMENT_KEYWORDS = ("nota", "nf", "numero", "invoice")
VALUE_KEYWORDS = ("valor", "total", "quantia", "amount")

MATCH_TOLERANCE = Decimal("0.01")
SIBLING_WINDOW_MINUTES = 30
SIBLING_LOOSE_MINUTES = 10
PREFIX_LENGTH = 3

_NON_DIGITS = re.compile(r"\D")
_FOUR_PLACES = Decimal("0.0001")
# Numeric(14, 4) holds at most 10 integer digits.
_MAX_VALUE = Decimal("1e10")


# ═══════════════════════════════════════════════════════════════════════════
#  Resolution helpers
# ═══════════════════════════════════════════════════════════════════════════


def _declared_amount(value):
    """Quantize a declared value; values the column cannot hold count as absent."""
    if value is None:
        return None
    if abs(value) >= _MAX_VALUE:
        logger.warning("Declared value %s out of range; treated as absent", value)
        return None
    return value.quantize(_FOUR_PLACES)


def _find_field(fields, role, keywords, exclude=None):
    for f in fields:
        if f.validation_role == role and f is not exclude:
            return f
    for f in fields:
        if f is exclude:
            continue
        name = (f.name or "").lower()
        if any(k in name for k in keywords):
            return f
    return None


def resolve_validation_fields(fields):
    """Return ``(document_field, value_field)``; either may be None.

    The explicit ``validation_role`` tag wins; field-name keywords are the
    fallback for templates created before the tag existed.
    """
    fields = list(fields)
    doc_field = _find_field(fields, "document_number", DOCUMENT_KEYWORDS)
    value_field = _find_field(fields, "declared_value", VALUE_KEYWORDS, exclude=doc_field)
    return doc_field, value_field


def resolve_role(user):
    """``"primary"``, ``"secondary"`` or None when the user has no function."""
    if user is None or user.function_id is None or user.function is None:
        return None
    keyword = (current_app.config.get("SECONDARY_ROLE_KEYWORD") or "aprendiz").lower()
    if keyword in (user.function.name or "").lower():
        return "secondary"
    return "primary"


def resolve_sector(user_id, store_id):
    """Per-store sector assignment first, then the user's default sector."""
    assignment = (
        UserStore.query
        .filter_by(user_id=user_id, store_id=store_id)
        .filter(UserStore.sector_id.isnot(None))
        .first()
    )
    if assignment:
        return assignment.sector_id
    user = db.session.get(User, user_id)
    return user.sector_id if user else None


def check_sibling_match(document_a, document_b, gap_minutes):
    """
    Decide whether two different document numbers describe the same delivery.

    Returns:
        (matched: bool, reason: str)
    """
    prefix_a = _NON_DIGITS.sub("", document_a or "")[:PREFIX_LENGTH]
    prefix_b = _NON_DIGITS.sub("", document_b or "")[:PREFIX_LENGTH]
    same_prefix = len(prefix_a) >= PREFIX_LENGTH and prefix_a == prefix_b
    rounded = round(gap_minutes)

    if same_prefix and gap_minutes <= SIBLING_WINDOW_MINUTES:
        return True, f'Notas com prefixo "{prefix_a}" preenchidas com {rounded} minutos de diferenca'
    if gap_minutes <= SIBLING_LOOSE_MINUTES:
        return True, (
            f"Notas preenchidas com apenas {rounded} minutos de diferenca "
            "(possivel erro de digitacao)"
        )
    return False, ""


def _compare(record):
    """Fill difference/status on a record whose two legs are populated."""
    primary, secondary = record.primary_value, record.secondary_value
    if primary is None or secondary is None:
        record.difference = None
        record.status = "matched_mismatch"
        record.match_reason = "Valor declarado ausente em um dos lados"
        return
    record.difference = abs(Decimal(primary) - Decimal(secondary)).quantize(_FOUR_PLACES)
    record.status = "matched_ok" if record.difference <= MATCH_TOLERANCE else "matched_mismatch"


def _find_exact_match(store_id, sector_id, document_number):
    base = CrossValidation.query.filter(
        CrossValidation.store_id == store_id,
        CrossValidation.document_number == document_number,
        CrossValidation.status != "expired",
    )
    if sector_id is not None:
        record = (
            base.filter(CrossValidation.sector_id == sector_id)
            .order_by(CrossValidation.created_at.desc(), CrossValidation.id.desc())
            .first()
        )
        if record:
            return record
    return (
        base.filter(CrossValidation.status == "pending")
        .order_by(CrossValidation.created_at.desc(), CrossValidation.id.desc())
        .first()
    )


def _find_sibling(store_id, leg, document_number, now):
    """Closest pending candidate in the window whose ``leg`` is still empty."""
    since = now - timedelta(minutes=SIBLING_WINDOW_MINUTES)
    leg_column = getattr(CrossValidation, f"{leg}_checklist_id")
    candidates = (
        CrossValidation.query
        .filter(
            CrossValidation.store_id == store_id,
            CrossValidation.status == "pending",
            CrossValidation.created_at >= since,
            leg_column.is_(None),
        )
        .all()
    )
    candidates.sort(key=lambda c: (minutes_between(now, c.created_at), c.id))
    for candidate in candidates:
        if candidate.document_number == document_number:
            continue
        matched, reason = check_sibling_match(
            document_number, candidate.document_number, minutes_between(now, candidate.created_at),
        )
        if matched:
            return candidate, reason
    return None, ""


# ═══════════════════════════════════════════════════════════════════════════
#  Chat alerts
# ═══════════════════════════════════════════════════════════════════════════


def _money(value):
    if value is None:
        return "N/A"
    return f"R$ {Decimal(value):.2f}"


def _place_names(store_id, sector_id):
    store = db.session.get(Store, store_id)
    sector = db.session.get(Sector, sector_id) if sector_id else None
    return (store.name if store else f"Loja {store_id}"), (sector.name if sector else "-")


def _publish_alert(event_type, title, record, *, level="warning", extra_facts=None):
    store_name, sector_name = _place_names(record.store_id, record.sector_id)
    facts = [
        {"name": "Nota Fiscal", "value": record.document_number},
        {"name": "Loja", "value": store_name},
        {"name": "Setor", "value": sector_name},
        {"name": "Valor primario", "value": _money(record.primary_value)},
        {"name": "Valor secundario", "value": _money(record.secondary_value)},
        {"name": "Diferenca", "value": _money(record.difference)},
    ]
    facts.extend(extra_facts or [])
    event_outbox.publish("chat", event_type, {
        "title": title,
        "facts": facts,
        "level": level,
        "summary": f"{title}: {record.document_number}",
    })


# ═══════════════════════════════════════════════════════════════════════════
#  Expiry sweep
# ═══════════════════════════════════════════════════════════════════════════


def expire_stale_validations(now=None):
    """Expire every pending record older than the TTL. Returns the count."""
    now = now or utcnow()
    ttl = SettingsService.validation_expiration_minutes()
    cutoff = now - timedelta(minutes=ttl)

    stale = (
        CrossValidation.query
        .filter(CrossValidation.status == "pending", CrossValidation.created_at < cutoff)
        .order_by(CrossValidation.id)
        .all()
    )
    for record in stale:
        record.status = "expired"
        record.validated_at = now
        _publish_alert(
            "cross_validation.expired", "Validacao expirada", record, level="info",
            extra_facts=[{"name": "Criada em", "value": as_utc(record.created_at).strftime("%d/%m/%Y %H:%M")}],
        )
        logger.info("Cross-validation expired: doc=%s id=%s", record.document_number, record.id)

    if stale:
        db.session.commit()
    return len(stale)


def _sweep(now):
    try:
        expire_stale_validations(now=now)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Expiry sweep failed")


# ═══════════════════════════════════════════════════════════════════════════
#  Entry point
# ═══════════════════════════════════════════════════════════════════════════


def process_cross_validation(checklist_id, template_id, store_id, user_id, responses, fields, *, now=None):
    """
    Run one reconciliation pass for a completed checklist.

    Returns:
        {"success": True} or {"success": False, "error": str}
    """
    now = now or utcnow()
    try:
        result = _reconcile(checklist_id, store_id, user_id, responses, fields, now)
    except ConfigurationMissing as exc:
        logger.debug("Reconciliation skipped for checklist %s: %s", checklist_id, exc)
        result = None
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Reconciliation failed for checklist %s", checklist_id,
                         extra={"checklist_id": checklist_id, "store_id": store_id})
        return {"success": False, "error": str(exc)}

    _sweep(now)
    return {"success": True, "outcome": result or "skipped"}


def _reconcile(checklist_id, store_id, user_id, responses, fields, now):
    doc_field, value_field = resolve_validation_fields(fields)
    if doc_field is None:
        raise ConfigurationMissing("template has no document-number field")

    by_field = {r.field_id: r for r in responses}
    doc_response = by_field.get(doc_field.id)
    document_number = read_document_number(doc_response) if doc_response else ""
    if not document_number:
        raise ConfigurationMissing("document number left blank")

    value = None
    if value_field is not None and value_field.id in by_field:
        value = _declared_amount(read_decimal(by_field[value_field.id]))

    user = db.session.get(User, user_id)
    leg = resolve_role(user)
    if leg is None:
        raise ConfigurationMissing(f"user {user_id} has no job function")

    sector_id = resolve_sector(user_id, store_id)

    # 1. Exact match
    record = _find_exact_match(store_id, sector_id, document_number)
    if record is not None:
        if record.leg_checklist_id(leg) is not None:
            logger.info("Duplicate %s leg for doc=%s ignored", leg, document_number)
            return "duplicate"
        record.fill_leg(leg, checklist_id, value)
        outcome = "leg_filled"
        if record.both_legs_filled:
            _compare(record)
            record.validated_at = now
            outcome = record.status
            if record.status == "matched_mismatch":
                _publish_alert("cross_validation.mismatch", "Divergencia na validacao de recebimento",
                               record, level="error")
                logger.warning("Mismatch on doc=%s difference=%s", document_number, record.difference)
        db.session.commit()
        return outcome

    # 2. Sibling search
    sibling, reason = _find_sibling(store_id, leg, document_number, now)
    if sibling is not None:
        sibling.fill_leg(leg, checklist_id, value)
        if sibling.primary_value is not None and sibling.secondary_value is not None:
            sibling.difference = abs(
                Decimal(sibling.primary_value) - Decimal(sibling.secondary_value)
            ).quantize(_FOUR_PLACES)
        sibling.status = "siblings_linked"
        sibling.match_reason = reason
        sibling.validated_at = now

        linked = CrossValidation(
            store_id=store_id,
            sector_id=sector_id,
            document_number=document_number,
            difference=sibling.difference,
            status="siblings_linked",
            linked_validation_id=sibling.id,
            match_reason=reason,
            is_primary=False,
            created_at=now,
            validated_at=now,
        )
        linked.fill_leg(leg, checklist_id, value)
        db.session.add(linked)
        db.session.flush()
        sibling.linked_validation_id = linked.id

        _publish_alert(
            "cross_validation.siblings_linked", "Notas diferentes vinculadas", sibling,
            extra_facts=[
                {"name": "Nota vinculada", "value": document_number},
                {"name": "Motivo", "value": reason},
            ],
        )
        db.session.commit()
        logger.info("Sibling link: %s <-> %s (%s)", sibling.document_number, document_number, reason)
        return "siblings_linked"

    # 3. New pending record
    record = CrossValidation(
        store_id=store_id,
        sector_id=sector_id,
        document_number=document_number,
        status="pending",
        is_primary=True,
        created_at=now,
    )
    record.fill_leg(leg, checklist_id, value)
    db.session.add(record)
    db.session.commit()
    return "pending"
