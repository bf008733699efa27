"""
StoreCheck
Non-conformity models.

Models:
    - FieldCondition: design-time rule attached to a template field
    - ActionPlan: remediation task opened when a response breaks a rule
"""

from datetime import datetime, timezone

from storecheck.models import db


# ── Constants ────────────────────────────────────────────────────────────────

SEVERITIES = ("baixa", "media", "alta", "critica")

CONDITION_TYPES = {
    "equals", "not_equals", "less_than", "greater_than", "between",
    "in_list", "not_in_list", "empty", "checkbox_rules",
}

ACTION_PLAN_STATUSES = {"open", "in_progress", "resolved", "cancelled", "overdue"}
OPEN_STATUSES = ("open", "in_progress")


class FieldCondition(db.Model):
    """
    Non-conformity rule for one field.

    ``condition_value`` shape depends on the field type:
        yes_no / text       {"value": "nao"}
        number              {"min": 0, "max": 10}
        rating              {"threshold": 3}
        dropdown            {"values": ["Ruim", "Pessimo"]}
        checkbox_multiple   {"required": [...], "forbidden": [...]}
    """

    __tablename__ = "field_conditions"

    id = db.Column(db.Integer, primary_key=True)
    field_id = db.Column(
        db.Integer, db.ForeignKey("template_fields.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    condition_type = db.Column(db.String(30), nullable=False)
    condition_value = db.Column(db.JSON, default=dict)
    severity = db.Column(db.String(20), default="media")
    default_assignee_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    deadline_days = db.Column(db.Integer, default=7)
    description_template = db.Column(db.Text, nullable=True)

    # Completion requirements copied into the resolve transition
    require_photo_on_completion = db.Column(db.Boolean, default=False)
    require_text_on_completion = db.Column(db.Boolean, default=False)
    completion_max_chars = db.Column(db.Integer, default=800)

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    field = db.relationship("TemplateField")

    def to_dict(self):
        return {
            "id": self.id,
            "field_id": self.field_id,
            "condition_type": self.condition_type,
            "condition_value": self.condition_value,
            "severity": self.severity,
            "default_assignee_id": self.default_assignee_id,
            "deadline_days": self.deadline_days,
            "description_template": self.description_template,
            "require_photo_on_completion": self.require_photo_on_completion,
            "require_text_on_completion": self.require_text_on_completion,
            "completion_max_chars": self.completion_max_chars,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<FieldCondition {self.id} field={self.field_id} {self.condition_type}>"


class ActionPlan(db.Model):
    """Remediation task for a detected non-conformity."""

    __tablename__ = "action_plans"
    __table_args__ = (
        db.Index("ix_action_plans_recurrence", "field_id", "store_id", "template_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    checklist_id = db.Column(db.Integer, db.ForeignKey("checklists.id", ondelete="SET NULL"), nullable=True)
    field_id = db.Column(db.Integer, db.ForeignKey("template_fields.id", ondelete="SET NULL"), nullable=True)
    field_condition_id = db.Column(
        db.Integer, db.ForeignKey("field_conditions.id", ondelete="SET NULL"), nullable=True,
    )
    response_id = db.Column(
        db.Integer, db.ForeignKey("checklist_responses.id", ondelete="SET NULL"), nullable=True,
    )
    template_id = db.Column(db.Integer, db.ForeignKey("checklist_templates.id", ondelete="SET NULL"), nullable=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True)
    sector_id = db.Column(db.Integer, db.ForeignKey("sectors.id", ondelete="SET NULL"), nullable=True)

    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=True)
    severity = db.Column(db.String(20), nullable=False, default="media")
    status = db.Column(db.String(20), nullable=False, default="open", index=True)

    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    deadline = db.Column(db.Date, nullable=False)

    is_reincidencia = db.Column(db.Boolean, default=False)
    reincidencia_count = db.Column(db.Integer, default=0)
    parent_action_plan_id = db.Column(
        db.Integer, db.ForeignKey("action_plans.id", ondelete="SET NULL"), nullable=True,
    )
    non_conformity_value = db.Column(db.Text, nullable=True)

    resolution_text = db.Column(db.Text, nullable=True)
    resolution_photos = db.Column(db.JSON, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    condition = db.relationship("FieldCondition")

    def to_dict(self):
        return {
            "id": self.id,
            "checklist_id": self.checklist_id,
            "field_id": self.field_id,
            "field_condition_id": self.field_condition_id,
            "response_id": self.response_id,
            "template_id": self.template_id,
            "store_id": self.store_id,
            "sector_id": self.sector_id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "status": self.status,
            "assigned_to": self.assigned_to,
            "assigned_by": self.assigned_by,
            "created_by": self.created_by,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "is_reincidencia": self.is_reincidencia,
            "reincidencia_count": self.reincidencia_count,
            "parent_action_plan_id": self.parent_action_plan_id,
            "non_conformity_value": self.non_conformity_value,
            "resolution_text": self.resolution_text,
            "resolution_photos": self.resolution_photos,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ActionPlan {self.id}: {self.title[:40]} [{self.status}]>"
