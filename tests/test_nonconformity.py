"""
Tests for the non-conformity evaluator and the action plan lifecycle.

Covers:
    - evaluate_condition for every field type
    - Severity escalation and title rendering
    - process_non_conformities: plan creation, reincidence, assignee,
      fan-out events, per-condition failure isolation
    - check_overdue_plans
    - transition_action_plan + completion requirements
"""

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from storecheck.core.exceptions import DataIntegrityGap, NotFoundError
from storecheck.models import db
from storecheck.models.action_plan import ActionPlan, FieldCondition
from storecheck.models.checklist import ActivityLog, ChecklistTemplate, TemplateField
from storecheck.models.notification import OutboundEvent
from storecheck.services.action_plan_lifecycle import (
    ActionPlanTransitionError,
    transition_action_plan,
    validate_transition,
)
from storecheck.services.nonconformity import (
    check_overdue_plans,
    escalate_severity,
    evaluate_condition,
    process_non_conformities,
    render_title,
)
from storecheck.services.settings_service import SettingsService

TODAY = date(2026, 3, 2)
NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


# ── Fixtures / helpers ───────────────────────────────────────────────────────


@pytest.fixture()
def cold_room_template():
    template = ChecklistTemplate(name="Camara Fria", category="abertura")
    db.session.add(template)
    db.session.flush()
    db.session.add_all([
        TemplateField(template_id=template.id, name="Temperatura", field_type="number", sort_order=1),
        TemplateField(template_id=template.id, name="Porta vedando", field_type="yes_no", sort_order=2),
    ])
    db.session.commit()
    return template


def _field(template, name):
    return next(f for f in template.fields if f.name == name)


def _condition(field, condition_type, value, **kw):
    cond = FieldCondition(
        field_id=field.id,
        condition_type=condition_type,
        condition_value=value,
        severity=kw.pop("severity", "media"),
        deadline_days=kw.pop("deadline_days", 3),
        **kw,
    )
    db.session.add(cond)
    db.session.commit()
    return cond


def _run(make_checklist, template, store, user, values, *, sector_id=None, now=NOW):
    checklist = make_checklist(template, store, user, values)
    return process_non_conformities(
        checklist.id, template.id, store.id, sector_id, user.id,
        list(checklist.responses), list(template.fields),
        today=now.date(), now=now,
    )


def _events(event_type, channel=None):
    q = OutboundEvent.query.filter_by(event_type=event_type)
    if channel:
        q = q.filter_by(channel=channel)
    return q.order_by(OutboundEvent.id).all()


def _ns_field(field_type):
    return SimpleNamespace(field_type=field_type)


def _ns_response(value_text=None, value_number=None, value_json=None):
    return SimpleNamespace(value_text=value_text, value_number=value_number, value_json=value_json)


def _ns_condition(condition_type, value=None):
    return SimpleNamespace(condition_type=condition_type, condition_value=value or {})


# ═════════════════════════════════════════════════════════════════════════════
# evaluate_condition
# ═════════════════════════════════════════════════════════════════════════════


class TestEvaluateCondition:
    def test_yes_no_equals(self):
        cond = _ns_condition("equals", {"value": "nao"})
        assert evaluate_condition(_ns_field("yes_no"), _ns_response("nao"), cond) is True
        assert evaluate_condition(_ns_field("yes_no"), _ns_response("sim"), cond) is False

    def test_yes_no_nested_answer_wins(self):
        cond = _ns_condition("equals", {"value": "nao"})
        response = _ns_response("sim", value_json={"answer": "nao", "comment": "borracha gasta"})
        assert evaluate_condition(_ns_field("yes_no"), response, cond) is True

    def test_yes_no_not_equals_and_empty(self):
        assert evaluate_condition(_ns_field("yes_no"), _ns_response("nao"),
                                  _ns_condition("not_equals", {"value": "sim"})) is True
        assert evaluate_condition(_ns_field("yes_no"), _ns_response(None), _ns_condition("empty")) is True
        assert evaluate_condition(_ns_field("yes_no"), _ns_response(None),
                                  _ns_condition("equals", {"value": "nao"})) is False

    @pytest.mark.parametrize("ctype,bounds,number,expected", [
        ("less_than", {"min": 0}, -2, True),
        ("less_than", {"min": 0}, 0, False),
        ("greater_than", {"max": 8}, 8.5, True),
        ("greater_than", {"max": 8}, 8, False),
        ("between", {"min": 2, "max": 8}, 1, True),
        ("between", {"min": 2, "max": 8}, 5, False),
        ("between", {"min": 2, "max": 8}, 9, True),
        ("less_than", {}, -100, False),
        ("greater_than", {"max": ""}, 100, False),
    ])
    def test_number(self, ctype, bounds, number, expected):
        cond = _ns_condition(ctype, bounds)
        assert evaluate_condition(_ns_field("number"), _ns_response(value_number=number), cond) is expected

    def test_number_empty(self):
        assert evaluate_condition(_ns_field("number"), _ns_response(), _ns_condition("empty")) is True
        assert evaluate_condition(_ns_field("number"), _ns_response(),
                                  _ns_condition("less_than", {"min": 0})) is False

    def test_rating(self):
        cond = _ns_condition("less_than", {"threshold": 3})
        assert evaluate_condition(_ns_field("rating"), _ns_response(value_number=2), cond) is True
        assert evaluate_condition(_ns_field("rating"), _ns_response(value_number=3), cond) is False

    def test_dropdown(self):
        bad = _ns_condition("in_list", {"values": ["Ruim", "Pessimo"]})
        good = _ns_condition("not_in_list", {"values": ["Bom", "Otimo"]})
        assert evaluate_condition(_ns_field("dropdown"), _ns_response("Ruim"), bad) is True
        assert evaluate_condition(_ns_field("dropdown"), _ns_response("Bom"), bad) is False
        assert evaluate_condition(_ns_field("dropdown"), _ns_response("Ruim"), good) is True
        assert evaluate_condition(_ns_field("dropdown"), _ns_response(""), _ns_condition("empty")) is True

    def test_checkbox_required_and_forbidden(self):
        cond = _ns_condition("checkbox_rules", {"required": ["luvas", "touca"], "forbidden": ["adorno"]})
        field = _ns_field("checkbox_multiple")
        assert evaluate_condition(field, _ns_response(value_json=["luvas", "touca"]), cond) is False
        assert evaluate_condition(field, _ns_response(value_json=["luvas"]), cond) is True
        assert evaluate_condition(field, _ns_response(value_json=["luvas", "touca", "adorno"]), cond) is True
        assert evaluate_condition(field, _ns_response('["luvas", "touca"]'), cond) is False

    def test_text(self):
        field = _ns_field("text")
        assert evaluate_condition(field, _ns_response("   "), _ns_condition("empty")) is True
        assert evaluate_condition(field, _ns_response("ok"), _ns_condition("empty")) is False
        assert evaluate_condition(field, _ns_response("vencido"),
                                  _ns_condition("equals", {"value": "vencido"})) is True

    def test_unsupported_field_type_conforms(self):
        assert evaluate_condition(_ns_field("signature"), _ns_response(), _ns_condition("empty")) is False

    def test_malformed_condition_value_is_a_data_gap(self):
        with pytest.raises(DataIntegrityGap):
            evaluate_condition(_ns_field("yes_no"), _ns_response("nao"), _ns_condition("equals", ["nao"]))

    def test_unknown_condition_type_is_a_data_gap(self):
        with pytest.raises(DataIntegrityGap):
            evaluate_condition(_ns_field("number"), _ns_response(value_number=1), _ns_condition("approx"))


class TestSeverityAndTitle:
    @pytest.mark.parametrize("before,after", [
        ("baixa", "media"), ("media", "alta"), ("alta", "critica"), ("critica", "critica"),
    ])
    def test_escalation_capped(self, before, after):
        assert escalate_severity(before) == after

    def test_title_template(self):
        cond = SimpleNamespace(description_template="{field_name} fora do padrao ({value}) em {store_name}")
        field = SimpleNamespace(name="Temperatura")
        assert render_title(cond, field, "-2", "Loja Centro") == "Temperatura fora do padrao (-2) em Loja Centro"

    def test_default_title(self):
        cond = SimpleNamespace(description_template=None)
        field = SimpleNamespace(name="Temperatura")
        assert render_title(cond, field, "-2", "Loja Centro") == "Nao conformidade: Temperatura - Loja Centro"


# ═════════════════════════════════════════════════════════════════════════════
# process_non_conformities
# ═════════════════════════════════════════════════════════════════════════════


class TestProcessNonConformities:
    def test_number_below_minimum_opens_one_plan(self, make_checklist, cold_room_template, store, primary_user):
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0})

        result = _run(make_checklist, cold_room_template, store, primary_user,
                      {temp.id: {"value_number": -2}})

        assert result == {"success": True, "plans_created": 1, "errors": []}
        plan = ActionPlan.query.one()
        assert plan.is_reincidencia is False
        assert plan.reincidencia_count == 0
        assert plan.severity == "media"
        assert plan.status == "open"
        assert plan.deadline == TODAY + timedelta(days=3)
        assert plan.assigned_to == primary_user.id
        assert plan.non_conformity_value == "-2"
        assert plan.title == "Nao conformidade: Temperatura - Loja Centro"
        assert plan.response_id is not None

    def test_conforming_response_opens_nothing(self, make_checklist, cold_room_template, store, primary_user):
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0})

        result = _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": 3}})
        assert result["plans_created"] == 0
        assert ActionPlan.query.count() == 0

    def test_no_conditions_is_a_noop(self, make_checklist, cold_room_template, store, primary_user):
        temp = _field(cold_room_template, "Temperatura")
        result = _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": -9}})
        assert result == {"success": True, "plans_created": 0, "errors": []}

    def test_inactive_condition_ignored(self, make_checklist, cold_room_template, store, primary_user):
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0}, is_active=False)
        result = _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": -9}})
        assert result["plans_created"] == 0

    def test_missing_response_skipped(self, make_checklist, cold_room_template, store, primary_user):
        temp = _field(cold_room_template, "Temperatura")
        door = _field(cold_room_template, "Porta vedando")
        _condition(door, "equals", {"value": "nao"})
        result = _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": 2}})
        assert result == {"success": True, "plans_created": 0, "errors": []}

    def test_default_assignee_and_custom_title(self, make_checklist, cold_room_template, store,
                                               primary_user, admin_user):
        door = _field(cold_room_template, "Porta vedando")
        _condition(door, "equals", {"value": "nao"}, default_assignee_id=admin_user.id, deadline_days=1,
                   description_template="{field_name}: {value} ({store_name})")

        _run(make_checklist, cold_room_template, store, primary_user, {door.id: {"value_text": "nao"}})

        plan = ActionPlan.query.one()
        assert plan.assigned_to == admin_user.id
        assert plan.assigned_by == primary_user.id
        assert plan.title == "Porta vedando: nao (Loja Centro)"
        assert plan.deadline == TODAY + timedelta(days=1)

    def test_events_published_for_new_plan(self, make_checklist, cold_room_template, store, primary_user):
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0})
        _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": -2}})

        in_app = _events("action_plan.assigned", "in_app")
        assert len(in_app) == 1
        assert in_app[0].payload["recipient_id"] == primary_user.id
        assert in_app[0].payload["type"] == "action_plan_assigned"

        email = _events("action_plan.assigned", "email")
        assert len(email) == 1
        assert email[0].payload["to"] == "carla@loja.test"
        assert email[0].payload["subject"] == "[StoreCheck] Plano de Acao: Temperatura"
        assert "Carla Souza" in email[0].payload["html_body"]

        assert len(_events("action_plan.created", "chat")) == 1
        assert _events("action_plan.reincidence") == []

    def test_no_email_without_assignee_address(self, make_checklist, cold_room_template, store, user_factory):
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0})
        user = user_factory("Sem Email")
        _run(make_checklist, cold_room_template, store, user, {temp.id: {"value_number": -2}})

        assert _events("action_plan.assigned", "email") == []
        assert len(_events("action_plan.assigned", "in_app")) == 1

    def test_configured_email_template_is_escaped(self, make_checklist, cold_room_template, store, user_factory):
        SettingsService.set("action_plan_email_template", "<p>{{assignee_name}} | {{plan_url}}</p>")
        SettingsService.set("action_plan_email_subject", "Plano {{plan_id}} - {{store_name}}")
        db.session.commit()
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0})
        user = user_factory("Ze <Admin> & Cia", email="ze@loja.test")

        _run(make_checklist, cold_room_template, store, user, {temp.id: {"value_number": -1}})

        plan = ActionPlan.query.one()
        payload = _events("action_plan.assigned", "email")[0].payload
        assert payload["subject"] == f"Plano {plan.id} - Loja Centro"
        assert "Ze &lt;Admin&gt; &amp; Cia" in payload["html_body"]
        assert f"http://localhost:5000/admin/planos-de-acao/{plan.id}" in payload["html_body"]


class TestReincidence:
    def _three_occurrences(self, make_checklist, template, store, user, field):
        for day in range(3):
            _run(make_checklist, template, store, user, {field.id: {"value_number": -1}},
                 now=NOW + timedelta(days=day))
        return ActionPlan.query.order_by(ActionPlan.id).all()

    def test_third_occurrence_escalates(self, make_checklist, cold_room_template, store, primary_user):
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0}, severity="media")

        first, second, third = self._three_occurrences(make_checklist, cold_room_template, store,
                                                       primary_user, temp)

        assert (first.is_reincidencia, first.reincidencia_count, first.severity) == (False, 0, "media")
        assert (second.is_reincidencia, second.reincidencia_count, second.severity) == (True, 1, "media")
        assert (third.is_reincidencia, third.reincidencia_count, third.severity) == (True, 2, "alta")
        assert second.parent_action_plan_id == first.id
        assert third.parent_action_plan_id == first.id

    def test_escalation_capped_at_critica(self, make_checklist, cold_room_template, store, primary_user):
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0}, severity="critica")

        plans = self._three_occurrences(make_checklist, cold_room_template, store, primary_user, temp)
        assert [p.severity for p in plans] == ["critica", "critica", "critica"]

    def test_outside_lookback_window_is_not_reincidence(self, make_checklist, cold_room_template, store,
                                                        primary_user):
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0})

        _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": -1}},
             now=NOW - timedelta(days=120))
        _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": -1}})

        latest = ActionPlan.query.order_by(ActionPlan.id.desc()).first()
        assert latest.is_reincidencia is False
        assert latest.parent_action_plan_id is None

    def test_other_store_does_not_count(self, make_checklist, cold_room_template, store, primary_user):
        from storecheck.models.store import Store
        other = Store(name="Loja Sul")
        db.session.add(other)
        db.session.commit()
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0})

        _run(make_checklist, cold_room_template, other, primary_user, {temp.id: {"value_number": -1}})
        _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": -1}})

        latest = ActionPlan.query.order_by(ActionPlan.id.desc()).first()
        assert latest.is_reincidencia is False

    def test_admins_notified_on_reincidence(self, make_checklist, cold_room_template, store,
                                            primary_user, admin_user):
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0})

        _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": -1}})
        assert _events("action_plan.reincidence") == []

        _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": -1}},
             now=NOW + timedelta(hours=1))
        events = _events("action_plan.reincidence")
        assert len(events) == 1
        assert events[0].payload["recipient_id"] == admin_user.id
        assert events[0].payload["title"] == "Reincidencia #2: Temperatura"

        assignee_events = _events("action_plan.assigned", "in_app")
        assert assignee_events[-1].payload["type"] == "reincidencia_detected"

    def test_admin_assignee_not_notified_twice(self, make_checklist, cold_room_template, store,
                                               primary_user, admin_user):
        temp = _field(cold_room_template, "Temperatura")
        _condition(temp, "less_than", {"min": 0}, default_assignee_id=admin_user.id)

        _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": -1}})
        _run(make_checklist, cold_room_template, store, primary_user, {temp.id: {"value_number": -1}},
             now=NOW + timedelta(hours=1))

        assert _events("action_plan.reincidence") == []


class TestFailureIsolation:
    def test_one_failing_condition_does_not_block_others(self, make_checklist, cold_room_template, store,
                                                         primary_user):
        temp = _field(cold_room_template, "Temperatura")
        door = _field(cold_room_template, "Porta vedando")
        _condition(temp, "less_than", {"min": 0})
        _condition(door, "equals", {"value": "nao"})

        outcomes = [
            SQLAlchemyError("database is locked"),
            {"is_reincidencia": False, "count": 0, "parent_id": None},
        ]
        with patch("storecheck.services.nonconformity.check_reincidence", side_effect=outcomes):
            result = _run(make_checklist, cold_room_template, store, primary_user, {
                temp.id: {"value_number": -1},
                door.id: {"value_text": "nao"},
            })

        assert result["success"] is False
        assert result["plans_created"] == 1
        assert result["errors"] == ["database is locked"]
        assert ActionPlan.query.one().field_id == door.id

    def test_unexpected_error_does_not_block_others(self, make_checklist, cold_room_template, store,
                                                    primary_user):
        temp = _field(cold_room_template, "Temperatura")
        door = _field(cold_room_template, "Porta vedando")
        _condition(door, "equals", {"value": "nao"})
        _condition(temp, "less_than", {"min": 0})

        outcomes = [
            ValueError("bad condition payload"),
            {"is_reincidencia": False, "count": 0, "parent_id": None},
        ]
        with patch("storecheck.services.nonconformity.check_reincidence", side_effect=outcomes):
            result = _run(make_checklist, cold_room_template, store, primary_user, {
                temp.id: {"value_number": -1},
                door.id: {"value_text": "nao"},
            })

        assert result["success"] is False
        assert result["plans_created"] == 1
        assert result["errors"] == ["ValueError: bad condition payload"]
        assert ActionPlan.query.one().field_id == temp.id

    def test_malformed_condition_is_skipped(self, make_checklist, cold_room_template, store, primary_user):
        temp = _field(cold_room_template, "Temperatura")
        door = _field(cold_room_template, "Porta vedando")
        _condition(door, "equals", ["nao"])
        _condition(temp, "less_than", {"min": 0})

        result = _run(make_checklist, cold_room_template, store, primary_user, {
            temp.id: {"value_number": -1},
            door.id: {"value_text": "nao"},
        })

        assert result == {"success": True, "plans_created": 1, "errors": []}
        assert ActionPlan.query.one().field_id == temp.id


# ═════════════════════════════════════════════════════════════════════════════
# Overdue scan
# ═════════════════════════════════════════════════════════════════════════════


def _create_plan(store, *, status="open", deadline=TODAY, assigned_to=None, condition=None):
    plan = ActionPlan(
        store_id=store.id,
        title="Porta da camara fria",
        severity="media",
        status=status,
        deadline=deadline,
        assigned_to=assigned_to,
        field_condition_id=condition.id if condition else None,
    )
    db.session.add(plan)
    db.session.commit()
    return plan


class TestOverdueScan:
    def test_past_deadline_becomes_overdue(self, store, primary_user, admin_user):
        late = _create_plan(store, deadline=TODAY - timedelta(days=1), assigned_to=primary_user.id)
        working = _create_plan(store, status="in_progress", deadline=TODAY - timedelta(days=5))
        due_today = _create_plan(store, deadline=TODAY)
        done = _create_plan(store, status="resolved", deadline=TODAY - timedelta(days=9))

        assert check_overdue_plans(today=TODAY) == 2

        assert db.session.get(ActionPlan, late.id).status == "overdue"
        assert db.session.get(ActionPlan, working.id).status == "overdue"
        assert db.session.get(ActionPlan, due_today.id).status == "open"
        assert db.session.get(ActionPlan, done.id).status == "resolved"

        recipients = sorted(e.payload["recipient_id"] for e in _events("action_plan.overdue"))
        assert recipients == sorted([primary_user.id, admin_user.id, admin_user.id])

    def test_nothing_overdue(self, store):
        _create_plan(store, deadline=TODAY + timedelta(days=2))
        assert check_overdue_plans(today=TODAY) == 0
        assert _events("action_plan.overdue") == []


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


class TestLifecycle:
    def test_start_progress(self, store, primary_user):
        plan = _create_plan(store)
        result = transition_action_plan(plan.id, "start_progress", primary_user.id)
        db.session.commit()

        assert result == {"action_plan_id": plan.id, "previous_status": "open",
                          "new_status": "in_progress", "action": "start_progress"}
        log = ActivityLog.query.filter_by(action="action_plan.start_progress").one()
        assert log.details["action_plan_id"] == plan.id

    def test_resolve_from_overdue(self, store, primary_user):
        plan = _create_plan(store, status="overdue")
        transition_action_plan(plan.id, "resolve", primary_user.id, text="Vedacao trocada")
        assert plan.status == "resolved"
        assert plan.resolution_text == "Vedacao trocada"
        assert plan.resolved_at is not None

    def test_invalid_transition(self, store, primary_user):
        plan = _create_plan(store, status="resolved")
        with pytest.raises(ActionPlanTransitionError) as exc_info:
            transition_action_plan(plan.id, "start_progress", primary_user.id)
        assert exc_info.value.current_status == "resolved"

    def test_unknown_action(self, store):
        plan = _create_plan(store)
        assert validate_transition(plan, "archive")["valid"] is False

    def test_missing_plan(self, primary_user):
        with pytest.raises(NotFoundError):
            transition_action_plan(9999, "resolve", primary_user.id)

    def test_reopen_clears_resolution(self, store, primary_user):
        plan = _create_plan(store)
        transition_action_plan(plan.id, "resolve", primary_user.id, text="ok", photos=["a.jpg"])
        transition_action_plan(plan.id, "reopen", primary_user.id)
        assert plan.status == "open"
        assert plan.resolution_text is None
        assert plan.resolution_photos is None
        assert plan.resolved_at is None


class TestCompletionRequirements:
    @pytest.fixture()
    def strict_condition(self, cold_room_template):
        door = _field(cold_room_template, "Porta vedando")
        return _condition(door, "equals", {"value": "nao"},
                          require_text_on_completion=True,
                          require_photo_on_completion=True,
                          completion_max_chars=20)

    def test_text_required(self, store, primary_user, strict_condition):
        plan = _create_plan(store, condition=strict_condition)
        with pytest.raises(ActionPlanTransitionError, match="resolution text is required"):
            transition_action_plan(plan.id, "resolve", primary_user.id, text="  ", photos=["a.jpg"])

    def test_photo_required(self, store, primary_user, strict_condition):
        plan = _create_plan(store, condition=strict_condition)
        with pytest.raises(ActionPlanTransitionError, match="at least one photo is required"):
            transition_action_plan(plan.id, "resolve", primary_user.id, text="Trocado")

    def test_text_too_long(self, store, primary_user, strict_condition):
        plan = _create_plan(store, condition=strict_condition)
        with pytest.raises(ActionPlanTransitionError, match="exceeds 20 characters"):
            transition_action_plan(plan.id, "resolve", primary_user.id, text="x" * 21, photos=["a.jpg"])

    def test_requirements_met(self, store, primary_user, strict_condition):
        plan = _create_plan(store, condition=strict_condition)
        transition_action_plan(plan.id, "resolve", primary_user.id, text="Trocado", photos=["a.jpg"])
        assert plan.status == "resolved"
        assert plan.resolution_photos == ["a.jpg"]

    def test_cancel_skips_requirements(self, store, primary_user, strict_condition):
        plan = _create_plan(store, condition=strict_condition)
        transition_action_plan(plan.id, "cancel", primary_user.id)
        assert plan.status == "cancelled"
